"""
Errors - categorized failures for Second Opinion

Every failure that reaches an operator or a calling agent carries a
category, a stable code and a troubleshooting hint. Callers branch on
the category (skip a provider, retry, abort startup) instead of
parsing messages.
"""

import time
from enum import Enum
from typing import Any, Optional

import httpx


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    PROVIDER = "provider_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class SecondOpinionError(Exception):
    """Base error with category, code and an operator-facing hint."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        code: str = "UNKNOWN_ERROR",
        provider: Optional[str] = None,
        troubleshooting: Optional[str] = None,
        cause: Optional[BaseException] = None,
        is_operational: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.code = code
        self.provider = provider
        self.troubleshooting = troubleshooting or troubleshooting_hint(category, provider)
        self.cause = cause
        self.is_operational = is_operational
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Serializable view. Never includes request payloads or keys."""
        data: dict[str, Any] = {
            "message": self.message,
            "category": self.category.value,
            "code": self.code,
            "troubleshooting": self.troubleshooting,
            "is_operational": self.is_operational,
            "timestamp": self.timestamp,
        }
        if self.provider:
            data["provider"] = self.provider
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data


class ConfigurationError(SecondOpinionError):
    """A required setting is missing or invalid."""

    def __init__(
        self,
        message: str,
        code: str = "CONFIGURATION_ERROR",
        provider: Optional[str] = None,
        env_var: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.env_var = env_var
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            code=code,
            provider=provider,
            troubleshooting=troubleshooting_hint(
                ErrorCategory.CONFIGURATION, provider, env_var=env_var
            ),
            cause=cause,
        )


class BackendError(SecondOpinionError):
    """A model backend call failed."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.status_code = status_code
        super().__init__(
            message,
            category=category,
            code=f"BACKEND_{category.name}",
            provider=provider,
            cause=cause,
        )

    @property
    def retryable(self) -> bool:
        return self.category in (
            ErrorCategory.NETWORK,
            ErrorCategory.RATE_LIMIT,
            ErrorCategory.PROVIDER,
        )


# =============================================================================
# Categorization
# =============================================================================

NETWORK_ERRNOS = {"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "EHOSTUNREACH", "ENETUNREACH"}
TIMEOUT_ERRNOS = {"ETIMEDOUT", "ESOCKETTIMEDOUT"}

MESSAGE_KEYWORDS: list[tuple[tuple[str, ...], ErrorCategory]] = [
    (("must be set", "not found", "invalid", "missing"), ErrorCategory.CONFIGURATION),
    (("network", "connection", "dns", "resolve"), ErrorCategory.NETWORK),
    (("unauthorized", "invalid key", "authentication"), ErrorCategory.AUTHENTICATION),
    (("timeout", "timed out"), ErrorCategory.TIMEOUT),
    (("rate limit", "too many"), ErrorCategory.RATE_LIMIT),
]


def categorize_status(status: int) -> ErrorCategory:
    """Map an HTTP status code to a category."""
    if status == 401:
        return ErrorCategory.AUTHENTICATION
    if status == 403:
        return ErrorCategory.AUTHORIZATION
    if status == 404:
        return ErrorCategory.NOT_FOUND
    if status in (408, 504):
        return ErrorCategory.TIMEOUT
    if status == 409:
        return ErrorCategory.CONFLICT
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if 400 <= status < 500:
        return ErrorCategory.VALIDATION
    if status >= 500:
        return ErrorCategory.PROVIDER
    return ErrorCategory.UNKNOWN


def categorize_error(error: BaseException) -> ErrorCategory:
    """
    Work out which category an arbitrary exception belongs to.

    Order: already-categorized errors, transport exception types,
    errno names, HTTP status, then message keywords.
    """
    if isinstance(error, SecondOpinionError):
        return error.category

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return categorize_status(error.response.status_code)
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return ErrorCategory.NETWORK
    if isinstance(error, FileNotFoundError):
        return ErrorCategory.NOT_FOUND
    if isinstance(error, PermissionError):
        return ErrorCategory.AUTHORIZATION

    errno_name = getattr(error, "code", None)
    if isinstance(errno_name, str):
        if errno_name in NETWORK_ERRNOS:
            return ErrorCategory.NETWORK
        if errno_name in TIMEOUT_ERRNOS:
            return ErrorCategory.TIMEOUT
        if errno_name == "ENOENT":
            return ErrorCategory.NOT_FOUND

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int):
        return categorize_status(status)

    message = str(error).lower()
    for keywords, category in MESSAGE_KEYWORDS:
        if any(k in message for k in keywords):
            return category

    return ErrorCategory.UNKNOWN


def troubleshooting_hint(
    category: ErrorCategory,
    provider: Optional[str] = None,
    env_var: Optional[str] = None,
) -> str:
    """Return a one-line hint an operator can act on."""
    who = provider or "the provider"
    match category:
        case ErrorCategory.CONFIGURATION:
            if env_var:
                return (
                    f"Check your .env file: ensure {env_var} is set with a valid value. "
                    "Restart the server after making changes."
                )
            return "Check your .env file for missing or invalid settings and restart the server."
        case ErrorCategory.NETWORK:
            return f"Check network connectivity to {who} and any proxy or firewall settings."
        case ErrorCategory.AUTHENTICATION:
            key = f"{provider.upper()}_API_KEY" if provider else "the API key"
            return f"Verify {key} is correct and has not expired."
        case ErrorCategory.AUTHORIZATION:
            return f"Your credentials lack permission for this request; check the account on {who}."
        case ErrorCategory.RATE_LIMIT:
            return f"Rate limit reached on {who}; wait before retrying or switch provider."
        case ErrorCategory.TIMEOUT:
            var = f"{provider.upper()}_TIMEOUT" if provider else "LLM_TIMEOUT"
            return f"The request timed out; raise {var} or simplify the request."
        case ErrorCategory.VALIDATION:
            return "The request was rejected as malformed; check the tool parameters."
        case ErrorCategory.PROVIDER:
            return f"{who} reported an internal error; retry later or use another provider."
        case ErrorCategory.NOT_FOUND:
            return "The requested resource was not found; check paths and model names."
        case ErrorCategory.CONFLICT:
            return "The request conflicts with current state; retry after refreshing."
        case _:
            return "An unexpected error occurred; check the server log for details."


def as_categorized(error: BaseException, provider: Optional[str] = None) -> SecondOpinionError:
    """Return error itself if already categorized, otherwise wrap it."""
    if isinstance(error, SecondOpinionError):
        return error
    return SecondOpinionError(
        f"{type(error).__name__}: {error}",
        category=categorize_error(error),
        code="UNEXPECTED_ERROR",
        provider=provider,
        cause=error,
        is_operational=False,
    )
