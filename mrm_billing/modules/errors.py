class BillingError(Exception):
    """Base class for every failure raised by the billing engine."""


class NotFound(BillingError, LookupError):
    """An entry, client or settings key was required but is absent."""


class ValidationFailure(BillingError, ValueError):
    """Input rejected: fee ratio out of range, unknown month code, bad label."""


class ConflictOnWrite(BillingError):
    """The store could not apply an upsert atomically."""


class CorruptStore(BillingError):
    """The entry registry on disk cannot be read; nothing is written over it."""
