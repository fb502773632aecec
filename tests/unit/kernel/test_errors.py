import pytest

from frontsync.kernel.errors import (
    AuthenticationError,
    CircuitBreakerOpenError,
    FrontSyncError,
    RateLimitError,
    UpstreamError,
    classify_error,
)

pytestmark = pytest.mark.unit


def test_error_code_must_be_dot_separated_lowercase():
    with pytest.raises(ValueError):
        FrontSyncError(code="Bad-Code", message="nope")


def test_to_dict_includes_meta_only_when_present():
    assert AuthenticationError().to_dict() == {
        "code": "upstream.unauthorized",
        "message": "Authentication failed (unauthorized)",
        "status_code": 401,
    }
    payload = CircuitBreakerOpenError(meta={"failure_count": 5}).to_dict()
    assert payload["code"] == "circuit.open"
    assert payload["meta"] == {"failure_count": 5}


def test_subclasses_carry_status_and_extras():
    assert RateLimitError(retry_after=12.0).retry_after == 12.0
    assert UpstreamError(status_code=503).status_code == 503


@pytest.mark.parametrize(
    "message,category",
    [
        ("Network timeout calling Front /events", "timeout"),
        ("Front rate limit exceeded (429)", "rate_limit"),
        ("Authentication failed (unauthorized)", "authentication"),
        ("Front resource not found (404)", "not_found"),
        ("Front server error (HTTP 500)", "server_error"),
        ("Network connection error calling Front", "network"),
        ("Validation failed: name can't be blank", "other"),
        (None, "other"),
    ],
)
def test_classify_error(message, category):
    assert classify_error(message) == category
