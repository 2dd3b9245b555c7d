from core.utils.exceptions import (
    AuthError,
    NetworkError,
    ParseError,
    RateLimitError,
    ServerError,
    ValidationError,
    create_error_context,
    is_retryable_error,
)


def test_transient_errors_are_retryable():
    assert is_retryable_error(NetworkError("connect failed"))
    assert is_retryable_error(RateLimitError("429", status_code=429))
    assert is_retryable_error(ServerError("502", status_code=502))


def test_permanent_and_foreign_errors_are_not_retryable():
    assert not is_retryable_error(AuthError("not authenticated"))
    assert not is_retryable_error(ValidationError("bad input"))
    assert not is_retryable_error(RuntimeError("boom"))


def test_error_context_carries_kind_status_and_row():
    error = ParseError("row 7 is bad", row=7, details={"field": "lot_size"})

    context = create_error_context(error, "instruments list", {"exchange": "NSE"})

    assert context["error_type"] == "ParseError"
    assert context["error_kind"] == "parse"
    assert context["operation"] == "instruments list"
    assert context["row"] == 7
    assert context["error_details"] == {"field": "lot_size"}
    assert context["retryable"] is False
    assert context["exchange"] == "NSE"
    assert "status_code" not in context


def test_error_context_for_plain_exception():
    context = create_error_context(ValueError("nope"), "parse")

    assert context["error_type"] == "ValueError"
    assert context["error_message"] == "nope"
    assert "error_kind" not in context
