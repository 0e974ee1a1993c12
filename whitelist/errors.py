from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .reconciler import ReconcileResult


FETCH_FAILED_ERROR_CODE = "WHITELIST_FETCH_FAILED"
CONFIG_INVALID_ERROR_CODE = "WHITELIST_CONFIG_INVALID"
ENFORCEMENT_FAILED_ERROR_CODE = "WHITELIST_ENFORCEMENT_FAILED"
RECONCILIATION_FAILED_ERROR_CODE = "WHITELIST_RECONCILIATION_FAILED"


class WhitelistError(RuntimeError):
    error_code = "WHITELIST_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class FetchError(WhitelistError):
    """Remote document could not be retrieved. Always recoverable from cache."""

    error_code = FETCH_FAILED_ERROR_CODE

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(WhitelistError):
    error_code = CONFIG_INVALID_ERROR_CODE


class EnforcementError(WhitelistError):
    """The server-side whitelist or session call failed."""

    error_code = ENFORCEMENT_FAILED_ERROR_CODE


class ReconciliationError(WhitelistError):
    """Raised when applying the whitelist delta fails part way through.

    ``partial`` holds whatever was applied before the failure; nothing is
    rolled back.
    """

    error_code = RECONCILIATION_FAILED_ERROR_CODE

    def __init__(self, message: str, partial: "ReconcileResult") -> None:
        super().__init__(message)
        self.partial = partial
