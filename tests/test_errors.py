"""Tests for error categorization and troubleshooting hints."""

import httpx
import pytest

from second_opinion.errors import (
    BackendError,
    ConfigurationError,
    ErrorCategory,
    SecondOpinionError,
    as_categorized,
    categorize_error,
    categorize_status,
    troubleshooting_hint,
)


@pytest.mark.parametrize(
    "status,category",
    [
        (401, ErrorCategory.AUTHENTICATION),
        (403, ErrorCategory.AUTHORIZATION),
        (404, ErrorCategory.NOT_FOUND),
        (408, ErrorCategory.TIMEOUT),
        (409, ErrorCategory.CONFLICT),
        (422, ErrorCategory.VALIDATION),
        (429, ErrorCategory.RATE_LIMIT),
        (502, ErrorCategory.PROVIDER),
        (302, ErrorCategory.UNKNOWN),
    ],
)
def test_categorize_status(status, category):
    assert categorize_status(status) is category


class _CodedError(Exception):
    def __init__(self, code):
        super().__init__("boom")
        self.code = code


@pytest.mark.parametrize(
    "error,category",
    [
        (ConfigurationError("x"), ErrorCategory.CONFIGURATION),
        (httpx.ConnectTimeout("slow"), ErrorCategory.TIMEOUT),
        (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
        (ConnectionResetError(), ErrorCategory.NETWORK),
        (FileNotFoundError(), ErrorCategory.NOT_FOUND),
        (_CodedError("ECONNREFUSED"), ErrorCategory.NETWORK),
        (_CodedError("ETIMEDOUT"), ErrorCategory.TIMEOUT),
        (RuntimeError("OPENAI_MODEL must be set"), ErrorCategory.CONFIGURATION),
        (RuntimeError("Too many requests"), ErrorCategory.RATE_LIMIT),
        (RuntimeError("request timed out"), ErrorCategory.TIMEOUT),
        (RuntimeError("???"), ErrorCategory.UNKNOWN),
    ],
)
def test_categorize_error(error, category):
    assert categorize_error(error) is category


def test_configuration_error_names_the_variable():
    error = ConfigurationError("missing", code="MODEL_NOT_SET", provider="openai", env_var="OPENAI_MODEL")
    data = error.to_dict()

    assert data["category"] == "configuration"
    assert data["code"] == "MODEL_NOT_SET"
    assert data["provider"] == "openai"
    assert "OPENAI_MODEL" in data["troubleshooting"]


@pytest.mark.parametrize(
    "category,retryable",
    [
        (ErrorCategory.NETWORK, True),
        (ErrorCategory.RATE_LIMIT, True),
        (ErrorCategory.PROVIDER, True),
        (ErrorCategory.TIMEOUT, False),
        (ErrorCategory.AUTHENTICATION, False),
    ],
)
def test_backend_error_retryable(category, retryable):
    assert BackendError("x", category).retryable is retryable


def test_every_category_has_a_hint():
    for category in ErrorCategory:
        assert troubleshooting_hint(category, "groq")


def test_as_categorized_keeps_categorized_errors():
    error = BackendError("down", ErrorCategory.PROVIDER, provider="openai")
    assert as_categorized(error) is error


def test_as_categorized_wraps_plain_exceptions():
    cause = ConnectionError("connection refused")
    wrapped = as_categorized(cause, provider="groq")

    assert isinstance(wrapped, SecondOpinionError)
    assert wrapped.category is ErrorCategory.NETWORK
    assert wrapped.code == "UNEXPECTED_ERROR"
    assert wrapped.provider == "groq"
    assert wrapped.cause is cause
    assert wrapped.is_operational is False
    assert wrapped.to_dict()["cause"] == "connection refused"
