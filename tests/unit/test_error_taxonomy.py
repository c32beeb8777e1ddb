import pytest

from batchrun.domain.error_taxonomy import (
    classify_error,
    format_error,
    is_canonical_error_code,
    resolve_error_code,
)


@pytest.mark.unit
def test_canonical_error_codes_are_enforced() -> None:
    assert is_canonical_error_code("fetch_failed") is True
    assert is_canonical_error_code("unknown_error") is False


@pytest.mark.unit
def test_unknown_or_missing_codes_normalize_to_internal_error() -> None:
    assert resolve_error_code("timeout") == "timeout"
    assert resolve_error_code("selector_missing") == "internal_error"
    assert resolve_error_code(None) == "internal_error"


@pytest.mark.unit
def test_retry_classification_distinguishes_fatal_and_recoverable() -> None:
    assert classify_error("fetch_failed") == "recoverable"
    assert classify_error("http_client_error") == "recoverable"
    assert classify_error("resource_unavailable") == "fatal"


@pytest.mark.unit
def test_format_error_prefixes_code() -> None:
    assert format_error("timeout", "took too long") == "timeout: took too long"
    assert format_error("internal_error", "") == "internal_error"
