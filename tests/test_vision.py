"""
Unit tests for the vision analysis service
"""

import httpx
import pytest

from conftest import chat_completion, gemini_answer
from agrisense.services import vision
from agrisense.services.providers import UpstreamStatusError
from agrisense.services.vision import (
    CONFIDENCE_NOT_FOUND,
    CONFIDENCE_PARSE_ERROR,
    DISEASE_DIAGNOSIS,
    NOT_FOUND,
    PARSE_ERROR,
    PARSED,
    PLANT_IDENTIFICATION,
    analyze_image,
    build_result,
    decode_model_answer,
    map_upstream_error,
)

IMAGE = "data:image/jpeg;base64,AAAA"


class TestDecodeModelAnswer:
    """Test extracting a JSON object from free-text model answers."""

    def test_object_embedded_in_prose(self):
        """Test that surrounding prose is ignored."""
        data, outcome = decode_model_answer('Here is the result: {"plantName":"Tomato","confidence":87} hope it helps')
        assert outcome == PARSED
        assert data == {"plantName": "Tomato", "confidence": 87}

    def test_fenced_code_block(self):
        """Test a markdown-fenced answer."""
        data, outcome = decode_model_answer('```json\n{"diseaseName": "Leaf Blight"}\n```')
        assert outcome == PARSED
        assert data == {"diseaseName": "Leaf Blight"}

    def test_no_braces(self):
        """Test an answer without any object."""
        data, outcome = decode_model_answer("I cannot tell what this plant is.")
        assert data is None
        assert outcome == NOT_FOUND

    def test_greedy_span_across_two_objects(self):
        """Test that the span runs from the first brace to the last one."""
        data, outcome = decode_model_answer('{"a": 1} and also {"b": 2}')
        assert data is None
        assert outcome == PARSE_ERROR

    def test_malformed_object(self):
        """Test a brace span that is not valid JSON."""
        data, outcome = decode_model_answer("{plantName: Tomato}")
        assert data is None
        assert outcome == PARSE_ERROR

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_non_standard_constants_rejected(self, literal):
        """Test that NaN and Infinity are treated as unparseable."""
        data, outcome = decode_model_answer('{"plantName":"Tomato","confidence":' + literal + "}")
        assert data is None
        assert outcome == PARSE_ERROR

    def test_missing_text(self):
        """Test a missing answer field."""
        assert decode_model_answer(None) == (None, PARSE_ERROR)


class TestBuildResult:
    """Test result shaping for each decoding outcome."""

    def test_parsed_object_returned_verbatim(self):
        """Test that a parsed object is not completed with missing fields."""
        result = build_result(PLANT_IDENTIFICATION, 'x {"plantName":"Tomato","confidence":87} y')
        assert result == {"plantName": "Tomato", "confidence": 87}

    def test_plant_not_found_fallback(self):
        """Test the plant fallback when the answer has no object."""
        text = "Looks like some kind of fern."
        result = build_result(PLANT_IDENTIFICATION, text)
        assert set(result) == set(PLANT_IDENTIFICATION.fields)
        assert result["plantName"] == "Unknown Plant"
        assert result["suitableEnvironment"] == text
        assert result["confidence"] == CONFIDENCE_NOT_FOUND

    def test_plant_parse_error_fallback(self):
        """Test the plant fallback when the object does not parse."""
        result = build_result(PLANT_IDENTIFICATION, "{broken}")
        assert set(result) == set(PLANT_IDENTIFICATION.fields)
        assert result["plantName"] == "Identification Error"
        assert result["suitableEnvironment"] == "{broken}"
        assert result["confidence"] == CONFIDENCE_PARSE_ERROR

    def test_plant_parse_error_without_text(self):
        """Test the placeholder used when the answer field is missing."""
        result = build_result(PLANT_IDENTIFICATION, None)
        assert result["suitableEnvironment"] == "Unable to analyze image"
        assert result["confidence"] == 0

    def test_disease_not_found_fallback(self):
        """Test the disease fallback when the answer has no object."""
        text = "The leaves look healthy to me."
        result = build_result(DISEASE_DIAGNOSIS, text)
        assert set(result) == set(DISEASE_DIAGNOSIS.fields)
        assert result["diseaseName"] == "Unknown Condition"
        assert result["severity"] == "unknown"
        assert result["symptoms"] == text
        assert result["confidence"] == 50

    def test_disease_parse_error_fallback(self):
        """Test the disease fallback when the object does not parse."""
        result = build_result(DISEASE_DIAGNOSIS, "{'diseaseName': 'Rust'}")
        assert result["diseaseName"] == "Diagnosis Error"
        assert result["prevention"] == "N/A"
        assert result["confidence"] == 0


class TestMapUpstreamError:
    """Test translation of upstream status codes."""

    @pytest.mark.parametrize("status,message", [
        (429, "Rate limit exceeded. Please try again later."),
        (402, "AI credits depleted. Please add credits to continue."),
    ])
    def test_passthrough_statuses(self, status, message):
        """Test that rate limit and credit errors keep their status."""
        result = map_upstream_error(UpstreamStatusError("lovable", status, "upstream says no"))
        assert result.status_code == status
        assert result.body == {"error": message}

    def test_other_status_hides_body(self):
        """Test that other failures become a generic 500."""
        result = map_upstream_error(UpstreamStatusError("openai", 503, "internal secret detail"))
        assert result.status_code == 500
        assert result.body == {"error": "AI service error"}


class TestAnalyzeImage:
    """Test the full request cycle against a mocked upstream."""

    def test_single_upstream_call(self, upstream, monkeypatch):
        """Test that exactly one request is made and the answer decoded."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        upstream.respond(200, chat_completion('{"diseaseName":"Rust","severity":"mild"}'))

        result = analyze_image(DISEASE_DIAGNOSIS, IMAGE)

        assert result.status_code == 200
        assert result.body == {"diseaseName": "Rust", "severity": "mild"}
        assert len(upstream.calls) == 1

    def test_environ_mapping_overrides_process_env(self, upstream):
        """Test passing credentials explicitly."""
        upstream.respond(200, gemini_answer('{"plantName":"Basil"}'))

        result = vision.identify_plant(IMAGE, environ={"GEMINI_API_KEY": "g-key"})

        assert result.body == {"plantName": "Basil"}
        assert upstream.calls[0].url.params["key"] == "g-key"

    def test_no_credentials(self, upstream):
        """Test that missing configuration fails before any network call."""
        result = analyze_image(PLANT_IDENTIFICATION, IMAGE, environ={})

        assert result.status_code == 500
        assert "No AI API key configured" in result.body["error"]
        assert upstream.calls == []

    def test_transport_error(self, monkeypatch):
        """Test that connection failures become a generic 500."""
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monkeypatch.setattr(vision, "open_http_client",
                            lambda: httpx.Client(transport=httpx.MockTransport(refuse)))
        result = analyze_image(PLANT_IDENTIFICATION, IMAGE, environ={"LOVABLE_API_KEY": "lv"})

        assert result.status_code == 500
        assert result.body == {"error": "AI service error"}

    def test_non_json_envelope(self, upstream):
        """Test a 2xx response whose body is not JSON."""
        upstream.respond(200, text="<html>gateway</html>")
        result = analyze_image(PLANT_IDENTIFICATION, IMAGE, environ={"LOVABLE_API_KEY": "lv"})

        assert result.status_code == 500
        assert result.body == {"error": "AI service error"}

    def test_missing_answer_field(self, upstream):
        """Test an envelope without choices."""
        upstream.respond(200, {"choices": []})
        result = analyze_image(DISEASE_DIAGNOSIS, IMAGE, environ={"LOVABLE_API_KEY": "lv"})

        assert result.status_code == 200
        assert result.body["diseaseName"] == "Diagnosis Error"
        assert result.body["symptoms"] == "Unable to analyze image"


class TestProbeGemini:
    """Test the Gemini connectivity probe."""

    def test_missing_key(self, upstream):
        """Test the probe without a Gemini key."""
        result = vision.probe_gemini(environ={"OPENAI_API_KEY": "sk"})
        assert result.status_code == 500
        assert result.body == {"error": "GEMINI_API_KEY is not configured"}
        assert upstream.calls == []

    def test_success(self, upstream):
        """Test a working key."""
        upstream.respond(200, gemini_answer("A mango is a tropical stone fruit."))
        result = vision.probe_gemini(environ={"GEMINI_API_KEY": "abc123"})

        assert result.status_code == 200
        assert result.body == {
            "success": True,
            "testResult": "A mango is a tropical stone fruit.",
            "message": "Gemini API is working correctly",
        }
        payload = upstream.calls[0].read()
        assert b"generationConfig" not in payload

    def test_upstream_failure_reports_details(self, upstream):
        """Test the diagnostic body for a rejected key."""
        upstream.respond(403, text="API key not valid")
        result = vision.probe_gemini(environ={"GEMINI_API_KEY": "abc123"})

        assert result.status_code == 500
        assert result.body == {
            "error": "API test failed: 403 - API key not valid",
            "apiKeyExists": True,
            "apiKeyLength": 6,
        }
