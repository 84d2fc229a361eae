from __future__ import annotations


class InventoryValidationError(ValueError):
    """Rejected write; ``errors`` holds one reason per offending item."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__('; '.join(self.errors))


class OpenRequestConflictError(ValueError):
    pass


class NotFoundError(LookupError):
    pass


class RequestBatchNotOpenError(NotFoundError):
    pass


class ExternalSinkError(RuntimeError):
    pass
