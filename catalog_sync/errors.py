# catalog_sync/errors.py
# Error taxonomy shared by the clients and the synchronizers.
from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base class for every error raised by this package."""


class AuthError(SyncError):
    """No session could be established with a remote system. Fatal for a run."""


class RemoteCallError(SyncError):
    """The ERP answered a call with a fault (validation, access rule, ...)."""

    def __init__(self, message: str, *, code: Any = None, name: Optional[str] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.name = name
        self.data = data


class RemoteWriteError(RemoteCallError):
    """A single create/update was rejected by the ERP."""


class SchemaValidationError(RemoteCallError):
    """A local value does not map to any option the ERP schema accepts."""


class NotFoundLocal(SyncError):
    """A referenced product, variant or region no longer exists in the catalog."""

    def __init__(self, message: str, *, item_id: Optional[str] = None):
        super().__init__(message)
        self.item_id = item_id


class TransientNetworkError(SyncError):
    """Timeout/connection failure that survived the retry budget."""


class CatalogRequestError(SyncError):
    """The catalog rejected a request with a non-retryable status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PriceUnavailable(SyncError):
    """No calculated price for the requested currency/region. Counted as a skip."""
