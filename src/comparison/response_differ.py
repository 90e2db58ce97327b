"""Response Differ - structural JSON comparison with regex suppression of known differences."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from src.domain.outcomes import ComparisonResult, DivergenceReason

ROOT_PATH = "(root)"

Payload = Union[str, bytes]


class ListOrderPolicy(Enum):
    """
    Whether JSON array order is significant.

    STRICT is the default: listings such as getAssetsByOwner are sorted by
    the server, so a reordering is a real divergence. IGNORE compares arrays
    as multisets.
    """

    STRICT = "strict"
    IGNORE = "ignore"


class DifferenceKind(Enum):
    MISSING_FROM_LHS = "missing_from_lhs"
    MISSING_FROM_RHS = "missing_from_rhs"
    NOT_EQUAL = "not_equal"


@dataclass(frozen=True)
class DifferenceRecord:
    """
    A single structural difference. lhs is the reference host, rhs the testing host.

    Rendered text follows the assert_json_diff wording so filter regexes such as
    'json atom at path ".*?\\.token_standard" is missing from rhs' apply unchanged.
    """

    path: str
    kind: DifferenceKind
    reference_value: Any = None
    testing_value: Any = None

    def render(self) -> str:
        path = self.path or ROOT_PATH
        if self.kind is DifferenceKind.MISSING_FROM_RHS:
            return f'json atom at path "{path}" is missing from rhs'
        if self.kind is DifferenceKind.MISSING_FROM_LHS:
            return f'json atom at path "{path}" is missing from lhs'
        return "\n".join(
            [
                f'json atoms at path "{path}" are not equal:',
                "    lhs:",
                _indent(_pretty(self.reference_value), 8),
                "    rhs:",
                _indent(_pretty(self.testing_value), 8),
            ]
        )


class MalformedPayloadError(ValueError):
    """Raised when a payload is not valid JSON."""


def _pretty(value: Any) -> str:
    return json.dumps(value, indent=4, sort_keys=True, ensure_ascii=False)


def _indent(text: str, width: int) -> str:
    prefix = " " * width
    return "\n".join(prefix + line for line in text.splitlines())


def _reject_constant(name: str) -> Any:
    raise MalformedPayloadError(f"non-standard JSON constant {name}")


def parse_payload(payload: Payload) -> Any:
    """
    Parse a raw response body.

    NaN/Infinity are rejected so a payload always compares equal to itself.

    Raises:
        MalformedPayloadError: If the payload is not valid JSON or is nested too deeply
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(f"payload is not UTF-8: {e}") from e
    if payload is None:
        raise MalformedPayloadError("payload is empty")
    try:
        return json.loads(payload, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"payload is not valid JSON: {e}") from e
    except RecursionError as e:
        raise MalformedPayloadError("payload is nested too deeply") from e


def _atoms_equal(lhs: Any, rhs: Any) -> bool:
    # true/false must never equal 1/0
    if isinstance(lhs, bool) or isinstance(rhs, bool):
        return isinstance(lhs, bool) and isinstance(rhs, bool) and lhs == rhs
    return lhs == rhs


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _canonical(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_canonical(item) for item in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _fingerprint(value: Any) -> str:
    return json.dumps(_canonical(value), sort_keys=True, ensure_ascii=False)


def filter_differences(
    records: Iterable[DifferenceRecord], filters: Sequence[Pattern[str]]
) -> List[DifferenceRecord]:
    """
    Drop every record whose rendered text matches any filter.

    Pure function: adding a filter can only remove records, never add them.
    """
    remaining = []
    for record in records:
        text = record.render()
        if any(pattern.search(text) for pattern in filters):
            continue
        remaining.append(record)
    return remaining


class ResponseDiffer:
    """Compare reference and testing payloads structurally."""

    def __init__(
        self,
        filters: Sequence[Pattern[str]] = (),
        list_order_policy: ListOrderPolicy = ListOrderPolicy.STRICT,
    ) -> None:
        self.filters: Tuple[Pattern[str], ...] = tuple(filters)
        self.list_order_policy = list_order_policy

    def compare(
        self,
        reference_payload: Payload,
        testing_payload: Payload,
        filters: Optional[Sequence[Pattern[str]]] = None,
    ) -> ComparisonResult:
        """
        Compare two raw payloads.

        Args:
            reference_payload: Body returned by the reference host
            testing_payload: Body returned by the testing host
            filters: Suppression regexes; defaults to the differ's own filters

        Returns:
            Equivalent, or Divergent with the unsuppressed differences joined by
            blank lines. Malformed payloads are Divergent with reason
            MALFORMED_PAYLOAD and are never filtered.
        """
        active_filters = self.filters if filters is None else tuple(filters)

        problems = []
        reference = testing = None
        try:
            reference = parse_payload(reference_payload)
        except MalformedPayloadError as e:
            problems.append(f"reference {e}")
        try:
            testing = parse_payload(testing_payload)
        except MalformedPayloadError as e:
            problems.append(f"testing {e}")
        if problems:
            return ComparisonResult.divergent(
                "\n".join(problems), reason=DivergenceReason.MALFORMED_PAYLOAD
            )

        try:
            differences = self.diff(reference, testing)
        except RecursionError:
            return ComparisonResult.divergent(
                "payloads are nested too deeply to compare",
                reason=DivergenceReason.MALFORMED_PAYLOAD,
            )

        remaining = filter_differences(differences, active_filters)
        if not remaining:
            return ComparisonResult.equivalent()

        return ComparisonResult.divergent("\n\n".join(record.render() for record in remaining))

    def diff(self, reference: Any, testing: Any) -> List[DifferenceRecord]:
        """
        Structural differences between two parsed documents.

        Records come out in traversal order with object keys sorted and array
        indexes ascending, so identical inputs always give identical output.
        """
        records: List[DifferenceRecord] = []
        self._diff_values(reference, testing, "", records)
        return records

    def _diff_values(
        self, lhs: Any, rhs: Any, path: str, records: List[DifferenceRecord]
    ) -> None:
        if isinstance(lhs, dict) and isinstance(rhs, dict):
            self._diff_objects(lhs, rhs, path, records)
        elif isinstance(lhs, list) and isinstance(rhs, list):
            if self.list_order_policy is ListOrderPolicy.STRICT:
                self._diff_ordered_arrays(lhs, rhs, path, records)
            else:
                self._diff_unordered_arrays(lhs, rhs, path, records)
        elif not _atoms_equal(lhs, rhs):
            records.append(DifferenceRecord(path, DifferenceKind.NOT_EQUAL, lhs, rhs))

    def _diff_objects(
        self, lhs: dict, rhs: dict, path: str, records: List[DifferenceRecord]
    ) -> None:
        for key in sorted(set(lhs) | set(rhs)):
            child_path = f"{path}.{key}"
            if key not in rhs:
                records.append(
                    DifferenceRecord(child_path, DifferenceKind.MISSING_FROM_RHS, lhs[key], None)
                )
            elif key not in lhs:
                records.append(
                    DifferenceRecord(child_path, DifferenceKind.MISSING_FROM_LHS, None, rhs[key])
                )
            else:
                self._diff_values(lhs[key], rhs[key], child_path, records)

    def _diff_ordered_arrays(
        self, lhs: list, rhs: list, path: str, records: List[DifferenceRecord]
    ) -> None:
        for index in range(max(len(lhs), len(rhs))):
            child_path = f"{path}[{index}]"
            if index >= len(rhs):
                records.append(
                    DifferenceRecord(child_path, DifferenceKind.MISSING_FROM_RHS, lhs[index], None)
                )
            elif index >= len(lhs):
                records.append(
                    DifferenceRecord(child_path, DifferenceKind.MISSING_FROM_LHS, None, rhs[index])
                )
            else:
                self._diff_values(lhs[index], rhs[index], child_path, records)

    def _diff_unordered_arrays(
        self, lhs: list, rhs: list, path: str, records: List[DifferenceRecord]
    ) -> None:
        unmatched = Counter(_fingerprint(item) for item in rhs)
        for index, item in enumerate(lhs):
            fingerprint = _fingerprint(item)
            if unmatched[fingerprint] > 0:
                unmatched[fingerprint] -= 1
            else:
                records.append(
                    DifferenceRecord(f"{path}[{index}]", DifferenceKind.MISSING_FROM_RHS, item, None)
                )

        unmatched_lhs = Counter(_fingerprint(item) for item in lhs)
        for index, item in enumerate(rhs):
            fingerprint = _fingerprint(item)
            if unmatched_lhs[fingerprint] > 0:
                unmatched_lhs[fingerprint] -= 1
            else:
                records.append(
                    DifferenceRecord(f"{path}[{index}]", DifferenceKind.MISSING_FROM_LHS, None, item)
                )
