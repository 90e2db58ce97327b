"""Test key loading and (method, key) pair scheduling."""

from .file_keys_parser import parse_keys_file, parse_keys_text
from .key_set import KeySetResolver, PairScheduler

__all__ = [
    "parse_keys_file",
    "parse_keys_text",
    "KeySetResolver",
    "PairScheduler",
]
