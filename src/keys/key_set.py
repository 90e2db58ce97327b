"""Read-only key set and per-worker round-robin pair scheduling."""

from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

from src.domain.methods import Method


class KeySetResolver:
    """
    Immutable view of the keys to test per method.

    Shared by reference across all workers; nothing here mutates after
    construction.
    """

    def __init__(self, keys_map: Mapping[Method, Sequence[str]]):
        # Fixed Method declaration order keeps pair enumeration deterministic
        self._keys: Mapping[Method, Tuple[str, ...]] = MappingProxyType(
            {
                method: tuple(keys_map[method])
                for method in Method
                if method in keys_map and keys_map[method]
            }
        )

    @property
    def methods(self) -> List[Method]:
        """Methods that have at least one key, in declaration order."""
        return list(self._keys.keys())

    def keys_for(self, method: Method) -> Tuple[str, ...]:
        """Ordered keys for a method (empty if none configured)."""
        return self._keys.get(method, ())

    def pairs(self) -> Iterator[Tuple[Method, str]]:
        """Yield every (method, key) pair, duplicates included."""
        for method, keys in self._keys.items():
            for key in keys:
                yield method, key

    def total_pairs(self) -> int:
        return sum(len(keys) for keys in self._keys.values())

    def is_empty(self) -> bool:
        return not self._keys

    def counts(self) -> Dict[str, int]:
        return {method.value: len(keys) for method, keys in self._keys.items()}

    def scheduler(self, offset: int = 0) -> "PairScheduler":
        """Create an independent round-robin scheduler for one worker."""
        return PairScheduler(self, offset)


class PairScheduler:
    """
    Round-robin (method, key) selection owned by a single worker.

    Methods are cycled in turn so each gets an equal share of requests
    regardless of how many keys it has. Keys cycle within each method.
    The offset staggers workers so they do not hit the same pair in lockstep.
    """

    def __init__(self, key_set: KeySetResolver, offset: int = 0):
        self._methods = key_set.methods
        if not self._methods:
            raise ValueError("Cannot schedule pairs from an empty key set")
        self._keys = {method: key_set.keys_for(method) for method in self._methods}

        method_count = len(self._methods)
        self._method_cursor = offset % method_count
        self._key_cursors = {
            method: (offset // method_count) % len(keys) for method, keys in self._keys.items()
        }

    def next_pair(self) -> Tuple[Method, str]:
        method = self._methods[self._method_cursor]
        self._method_cursor = (self._method_cursor + 1) % len(self._methods)

        keys = self._keys[method]
        cursor = self._key_cursors[method]
        self._key_cursors[method] = (cursor + 1) % len(keys)
        return method, keys[cursor]
