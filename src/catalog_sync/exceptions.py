"""Error taxonomy for the synchronization engine."""

from enum import Enum
from typing import Any


class CatalogSyncError(Exception):
    """Base class for all catalog sync errors."""


class ErpApiError(CatalogSyncError):
    """An ERP API call failed (HTTP error status, timeout or network failure)."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        status_code: int | None = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
        self.data = data


class ErpNotFoundError(ErpApiError):
    """The ERP reported that the resource does not exist (HTTP 404).

    Dolibarr also answers 404 for list endpoints with no results, so callers
    treat this as an empty result rather than a failure.
    """


class PersistenceError(CatalogSyncError):
    """The local store rejected a write or could not be reached."""

    def __init__(self, operation: str, context: dict[str, Any], cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.context = context
        self.__cause__ = cause


class DeleteOutcome(str, Enum):
    """Result of a delete-by-external-id operation."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"
