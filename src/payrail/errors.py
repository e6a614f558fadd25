"""Exception types shared by the gateway, the ledger store and the jobs."""

import json
from typing import Any, Optional


class PayrailError(Exception):
    """Base class for settlement errors."""


class ConfigurationError(PayrailError):
    """Raised when required settings (credentials, wallet set) are missing."""


class ProviderError(PayrailError):
    """Raised when the custodial provider fails or returns an unusable payload."""

    def __init__(
        self,
        operation: str,
        detail: Any = None,
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        # Set by callers that generated the key for a failed transfer
        self.idempotency_key: Optional[str] = None

        if isinstance(detail, (dict, list)):
            detail_text = json.dumps(detail, default=str)
        else:
            detail_text = str(detail) if detail is not None else "no detail"

        prefix = f"{operation} failed"
        if status_code is not None:
            prefix += f" (HTTP {status_code})"
        super().__init__(f"{prefix}: {detail_text}")


class StoreError(PayrailError):
    """Raised when a ledger store read or write fails."""
