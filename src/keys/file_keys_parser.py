"""
Test keys file parser.

File format:

    getAsset:
    F9Lw3ki3hJ7PF9HQXsBzoY8GyE6sPoEZZdXJBsTTD2rk,8vwDZ8ZuWgUK3k8MskTPKQGfnCoGXZFuCeTgJsWvbsfC,
    getAssetsByOwner:
    3VvLDXqJbw3heyRwFxv8MmurPznmDVUJS9gPMX2BDqfM

A line ending with ':' opens a method section. Following lines hold
comma-separated keys. Empty items (trailing commas, blank lines) are skipped.
"""

from pathlib import Path
from typing import Dict, List, Union

from src.domain.methods import Method
from src.exceptions import KeyFileError
from src.utils.logger import get_logger

logger = get_logger(__name__)


def parse_keys_text(text: str) -> Dict[Method, List[str]]:
    """
    Parse keys file content into a method -> keys mapping.

    Sections for unknown method names are skipped with a warning. Keys that
    appear before any section header are ignored. Duplicate keys are kept.

    Args:
        text: Raw file content

    Returns:
        Mapping from Method to keys in file order
    """
    keys_map: Dict[Method, List[str]] = {}
    current_method = None
    skipping_section = False

    for line_number, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line:
            continue

        if line.endswith(":"):
            section_name = line[:-1].strip()
            try:
                current_method = Method.from_name(section_name)
                skipping_section = False
            except ValueError:
                logger.warning(
                    "Skipping keys for unsupported method",
                    operation="parse_keys",
                    context={"method": section_name, "line": line_number},
                )
                current_method = None
                skipping_section = True
            continue

        if current_method is None:
            if not skipping_section:
                logger.warning(
                    "Ignoring keys outside of a method section",
                    operation="parse_keys",
                    context={"line": line_number},
                )
            continue

        for pubkey in line.split(","):
            pubkey = pubkey.strip()
            if not pubkey:
                continue
            keys_map.setdefault(current_method, []).append(pubkey)

    return keys_map


def parse_keys_file(file_path: Union[str, Path]) -> Dict[Method, List[str]]:
    """
    Read and parse a test keys file.

    Raises:
        KeyFileError: If the file cannot be read
    """
    path = Path(file_path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise KeyFileError(f"Cannot read test keys file {path}: {e}") from e

    keys_map = parse_keys_text(text)
    logger.info(
        "Loaded test keys",
        operation="parse_keys",
        context={
            "file": str(path),
            "keys_per_method": {method.value: len(keys) for method, keys in keys_map.items()},
        },
    )
    return keys_map
