"""Exception types raised by batch orchestration."""

from __future__ import annotations


class BatchError(Exception):
    """Base class for precondition failures that abort a batch run."""


class ConfigError(BatchError):
    """Raised when the configuration file is missing or incomplete."""


class NotFoundError(BatchError):
    """Raised when a required input directory does not exist."""


class DuplicateWorkUnitError(BatchError):
    """Raised when two input directories map to the same sample name."""


class InvalidConcurrencyError(BatchError, ValueError):
    """Raised when the concurrency cap is not a positive integer."""
