"""
Custom error classes for Salesmap Attribution Hub.
Structured error handling with error codes across all modules.

Hierarchy:
    HubError
    ├── APIError
    │   ├── APIAuthError
    │   ├── APITimeoutError
    │   └── UpstreamPageError
    └── DataError
        └── ExportDataError
"""


class HubError(Exception):
    """Base exception for all Salesmap Attribution Hub errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- API Errors ---

class APIError(HubError):
    """Base class for API errors, inbound or upstream."""

    def __init__(self, message: str, code: str = "API_ERROR",
                 status_code: int = None, url: str = None, **kwargs):
        self.status_code = status_code
        self.url = url
        details = {"status_code": status_code, "url": url, **kwargs}
        super().__init__(message, code=code, details=details)


class APIAuthError(APIError):
    """Missing, malformed or too-short bearer token."""

    def __init__(self, message: str = "Authentication required.", url: str = None):
        super().__init__(
            message, code="API_AUTH_FAILED", url=url, status_code=401,
        )


class APITimeoutError(APIError):
    """A whole collection run exceeded its time budget."""

    def __init__(self, url: str, timeout: float):
        super().__init__(
            f"Request timed out after {timeout:g}s: {url}",
            code="API_TIMEOUT", url=url, timeout=timeout,
        )


class UpstreamPageError(APIError):
    """One upstream history page could not be fetched or parsed."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(
            message, code="UPSTREAM_PAGE_FAILED", url=url, status_code=status_code,
        )


# --- Data Errors ---

class DataError(HubError):
    """Base class for data processing errors."""
    pass


class ExportDataError(DataError):
    """Nothing exportable was found in the collected history."""

    def __init__(self, message: str = "No exportable rows.", kind: str = None):
        super().__init__(
            message, code="EXPORT_EMPTY", details={"kind": kind},
        )
