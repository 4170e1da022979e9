"""Exceptions raised by the smart shuffle core."""


class NotFoundError(LookupError):
    """A referenced song does not exist in the catalogue."""


class StorageUnavailableError(RuntimeError):
    """A durable store could not complete an operation.

    Always propagated to the caller; the core never retries.
    """
