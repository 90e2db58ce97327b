"""Performance mode: load generation against the testing host."""

from .load_generator import LoadGenerator

__all__ = ["LoadGenerator"]
