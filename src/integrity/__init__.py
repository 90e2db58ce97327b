"""Integrity mode: reference vs. testing host comparison."""

from .runner import IntegrityTestRunner, PairCheck, PairState

__all__ = ["IntegrityTestRunner", "PairCheck", "PairState"]
