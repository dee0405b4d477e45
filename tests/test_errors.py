"""Tests for failure classification and normalization."""

import json
import pytest

import httpx
from pydantic import ValidationError

from equity_insight.entities import ReportKind
from equity_insight.errors import (
    AnalysisError,
    EmptyResponseError,
    ErrorDescriptor,
    ParseError,
    RefusalError,
    StructuredFailure,
    TransportFailure,
    classify_failure,
    invalid_request_error,
    missing_credentials_error,
    normalize_error,
    unwrap_failure,
)
from equity_insight.models import AnalysisReport


class APIError(Exception):
    """Shaped like the SDK's HTTP error: numeric code, textual status."""

    def __init__(self, code: int, status: str, message: str):
        super().__init__(f"{code} {status}. {message}")
        self.code = code
        self.status = status


class TestClassifyFailure:

    def test_descriptor_is_structured(self):
        """Test that descriptors and AnalysisErrors classify as structured."""
        descriptor = ErrorDescriptor(title="T", message="M", is_retryable=False)
        assert classify_failure(descriptor) == StructuredFailure(descriptor)
        assert classify_failure(AnalysisError(descriptor)) == StructuredFailure(descriptor)

    def test_shaped_mapping_is_structured(self):
        """Test that a descriptor-shaped mapping classifies as structured."""
        failure = classify_failure({"title": "T", "message": "M", "isRetryable": False})
        assert isinstance(failure, StructuredFailure)
        assert failure.descriptor.is_retryable is False

    def test_mapping_without_retry_flag_is_transport(self):
        """Test that a mapping missing isRetryable is a transport failure."""
        assert isinstance(classify_failure({"title": "T", "message": "M"}), TransportFailure)

    def test_exception_is_transport(self):
        """Test that a plain exception is a transport failure."""
        error = RuntimeError("x")
        assert classify_failure(error) == TransportFailure(error)


class TestUnwrapFailure:

    def test_plain_exception(self):
        """Test unwrapping an exception without a status."""
        assert unwrap_failure(RuntimeError("boom")) == (None, "boom")

    def test_status_attribute(self):
        """Test that the SDK status code is read."""
        assert unwrap_failure(APIError(503, "UNAVAILABLE", "overloaded"))[0] == 503

    def test_embedded_json_wins(self):
        """Test that an embedded JSON error body supplies code and message."""
        raw = 'Request failed: {"error": {"code": 429, "message": "Quota exceeded for model"}}'
        assert unwrap_failure(Exception(raw)) == (429, "Quota exceeded for model")

    def test_malformed_embedded_json_is_ignored(self):
        """Test that a broken embedded body leaves the text alone."""
        raw = "failure {code: 500"
        assert unwrap_failure(raw) == (None, raw)


class TestNormalizeError:
    """Each failure maps to exactly one taxonomy entry."""

    def test_structured_passes_through(self):
        """Test that an existing descriptor is returned unchanged."""
        descriptor = ErrorDescriptor(title="Custom", message="Already shaped", is_retryable=False)
        assert normalize_error(descriptor) is descriptor
        assert normalize_error(AnalysisError(descriptor)) is descriptor

    def test_service_overloaded(self):
        """Test that 503 overloaded is retryable."""
        descriptor = normalize_error(APIError(503, "UNAVAILABLE", "The model is overloaded"))
        assert descriptor.title == "Service Overloaded"
        assert descriptor.is_retryable

    @pytest.mark.parametrize("raw,title,retryable", [
        (APIError(400, "INVALID_ARGUMENT", "Request contains an invalid argument."), "Invalid Request", False),
        (APIError(401, "UNAUTHENTICATED", "API key not valid."), "Authentication Error", False),
        (APIError(403, "PERMISSION_DENIED", "Forbidden"), "Permission Denied", False),
        (APIError(404, "NOT_FOUND", "models/foo is not found"), "Resource Not Found", False),
        (APIError(429, "RESOURCE_EXHAUSTED", "Quota exceeded"), "Rate Limit Exceeded", True),
        (APIError(500, "INTERNAL", "Internal error"), "Server Error", True),
        (Exception("Something odd happened"), "Analysis Failed", True),
    ])
    def test_status_taxonomy(self, raw, title, retryable):
        """Test the status code to descriptor mapping."""
        descriptor = normalize_error(raw)
        assert descriptor.title == title
        assert descriptor.is_retryable is retryable

    def test_network_errors(self):
        """Test that connection failures map to a network error."""
        for raw in [ConnectionError("reset"), httpx.ConnectError("refused"), "TypeError: Failed to fetch"]:
            descriptor = normalize_error(raw)
            assert descriptor.title == "Network Connection Error"
            assert descriptor.is_retryable

    def test_embedded_rate_limit(self):
        """Test that an embedded 429 maps to rate limit exceeded."""
        raw = Exception('{"error": {"code": 429, "message": "Resource has been exhausted"}}')
        descriptor = normalize_error(raw)
        assert descriptor.title == "Rate Limit Exceeded"
        assert descriptor.details == "Resource has been exhausted"

    def test_parse_error_keeps_raw_text(self):
        """Test that a parse error keeps the raw model text as details."""
        descriptor = normalize_error(ParseError("Failed to parse", raw_text="Here you go: {oops"))
        assert descriptor.title == "Data Parsing Error"
        assert descriptor.is_retryable
        assert descriptor.details == "Here you go: {oops"

    def test_decoder_column_is_not_a_status(self):
        """A decoder message like 'column 400' is still a parsing problem."""
        try:
            json.loads("[" + "1," * 199 + "}")
        except json.JSONDecodeError as e:
            error = e
        assert normalize_error(error).title == "Data Parsing Error"

    def test_validation_error_is_parse_error(self):
        """Test that a pydantic validation error is a parsing error."""
        with pytest.raises(ValidationError) as exc_info:
            AnalysisReport.model_validate({"quant_metrics": ["not", "a", "mapping"]})
        assert normalize_error(exc_info.value).title == "Data Parsing Error"

    def test_refusal_for_analysis(self):
        """Test that an analysis refusal names the ticker."""
        descriptor = normalize_error(RefusalError("I cannot find XYZQ.", ReportKind.ANALYSIS, "XYZQ"))
        assert descriptor.title == "Ticker Not Found"
        assert "XYZQ" in descriptor.message
        assert descriptor.details == "I cannot find XYZQ."
        assert not descriptor.is_retryable

    def test_refusal_for_ipo(self):
        """Test that an IPO refusal is not retryable."""
        descriptor = normalize_error(RefusalError("No data available", ReportKind.IPO_DETAIL, "Acme"))
        assert descriptor.title == "IPO Not Found"
        assert not descriptor.is_retryable

    def test_refusal_for_other_kinds(self):
        """Test the refusal descriptor for list reports."""
        descriptor = normalize_error(RefusalError("No data available", ReportKind.SCREENER))
        assert descriptor.title == "No Matching Data"

    def test_empty_response_is_generic(self):
        """Test the descriptor for an empty model response."""
        descriptor = normalize_error(EmptyResponseError())
        assert descriptor.title == "Analysis Failed"
        assert "safety" in descriptor.details

    def test_never_raises_on_odd_input(self):
        """Test that any input normalizes to a descriptor."""
        for raw in [None, 42, {"unexpected": True}, ["a"], b"bytes"]:
            assert isinstance(normalize_error(raw), ErrorDescriptor)


class TestDescriptors:

    def test_to_dict(self):
        """Test the wire form of a descriptor."""
        assert missing_credentials_error().to_dict() == {
            "title": "Missing API Key",
            "message": "API Key is not configured.",
            "details": None,
            "isRetryable": False,
        }

    def test_invalid_request(self):
        """Test the invalid request descriptor."""
        descriptor = invalid_request_error("Ticker cannot be empty")
        assert descriptor.title == "Invalid Request"
        assert descriptor.details == "Ticker cannot be empty"
        assert not descriptor.is_retryable

    def test_analysis_error_carries_descriptor(self):
        """Test that AnalysisError exposes its descriptor."""
        descriptor = missing_credentials_error()
        error = AnalysisError(descriptor)
        assert error.descriptor is descriptor
        assert str(error) == descriptor.message
