"""
Exception hierarchy for the integrity verification tool.

Only setup problems are raised as exceptions. Per-request and per-pair
failures are recorded as outcome values so a single bad key never stops a run.
"""


class IntegrityVerificationError(Exception):
    """Base exception for all fatal integrity verification errors."""

    pass


class ConfigurationError(IntegrityVerificationError):
    """
    Raised when the configuration is invalid.

    Always raised before any network activity starts.
    """

    pass


class KeyFileError(IntegrityVerificationError):
    """Raised when the test keys file cannot be read."""

    pass
