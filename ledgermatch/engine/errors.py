"""Exceptions raised by the reconciliation engine."""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""
    category = "reconciliation"
    exit_code = 5


class PreconditionError(ReconciliationError, ValueError):
    """Input is missing or unusable; fix the input and retry."""
    category = "precondition"
    exit_code = 3


class DataNotLoadedError(PreconditionError):
    """An operation needs records that have not been loaded yet."""


class ConfigurationError(ReconciliationError, ValueError):
    """A matching configuration value is out of range or unresolvable."""
    category = "configuration"
    exit_code = 4


class RecordError(ReconciliationError, ValueError):
    """A single record is malformed. Callers skip it and continue."""
    category = "record"
    exit_code = 3
