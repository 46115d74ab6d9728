"""
Vision Analysis Service
Plant identification and disease diagnosis through a multimodal AI provider.

One call per request: select a provider by configured credential, forward the
image with a task prompt, translate upstream status codes, then decode the
model's free-text answer. Model output is not contractually JSON, so decoding
is tolerant: the first brace-delimited span is parsed and returned as-is, and
anything unparseable degrades into a fixed-shape fallback object instead of
an error.
"""
import json
import logging
import re
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Tuple

import httpx

from agrisense import config
from agrisense.services.providers import (
    GeminiProvider,
    ProviderConfigError,
    UpstreamResponseError,
    UpstreamStatusError,
    open_http_client,
    select_provider,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
CREDITS_MESSAGE = "AI credits depleted. Please add credits to continue."
AI_SERVICE_ERROR = "AI service error"

# Sentinel confidences for the two fallback outcomes.
CONFIDENCE_NOT_FOUND = 50
CONFIDENCE_PARSE_ERROR = 0

PARSED = "parsed"
NOT_FOUND = "not_found"
PARSE_ERROR = "parse_error"

# Greedy: first "{" through last "}".
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


PLANT_FIELDS = (
    "plantName", "scientificName", "plantType", "family", "origin",
    "suitableEnvironment", "careInstructions", "growthHabit", "floweringSeason",
    "toxicity", "uses", "propagation", "commonProblems", "confidence",
)

DISEASE_FIELDS = ("diseaseName", "severity", "symptoms", "treatment", "prevention", "confidence")

PLANT_PROMPT = (
    "You are an expert botanist with extensive knowledge of plant identification. "
    "Carefully analyze the provided plant image, examining leaf shape, color, texture, growth pattern, "
    "flowers, fruits, bark, and any distinctive features. Provide comprehensive identification with "
    "detailed botanical information. Return the response as JSON with fields: "
    "plantName (specific common name), scientificName (Latin binomial), "
    "plantType (e.g., succulent, flowering plant, fern, tree, shrub), family (botanical family), "
    "origin (native region), suitableEnvironment (detailed climate, light, temperature requirements), "
    "careInstructions (specific watering, soil, fertilizing, pruning needs), "
    "growthHabit (size, shape, growth pattern), floweringSeason (when it blooms), "
    "toxicity (if poisonous to humans/pets), uses (medicinal, culinary, ornamental), "
    "propagation (how to propagate), commonProblems (pests, diseases, issues), and confidence (0-100)."
)

PLANT_USER_TEXT = (
    "Carefully examine this specific plant image. Analyze all visible characteristics: leaf shape, size, "
    "color, texture, arrangement, margins, veins, growth pattern, stem/bark appearance, flowers, fruits, "
    "and any distinctive features. Identify this exact plant species and provide comprehensive botanical "
    "information including its family, origin, growth habits, care requirements, flowering season, "
    "toxicity, uses, propagation methods, and common problems. Be specific and detailed - focus on what "
    "you actually observe in this image."
)

DISEASE_PROMPT = (
    "You are an expert plant pathologist with years of experience diagnosing plant diseases. "
    "Carefully examine the provided plant image, looking for specific symptoms like discoloration, spots, "
    "wilting, lesions, mold, pest damage, or abnormal growth patterns. Provide accurate diagnosis based on "
    "the exact visual symptoms you observe. Return the response as JSON with fields: "
    "diseaseName (specific disease or condition name), severity (mild/moderate/severe based on visible damage), "
    "symptoms (detailed description of what you see), treatment (specific actionable steps), "
    "prevention (specific preventive measures), and confidence (0-100)."
)

DISEASE_USER_TEXT = (
    "Carefully examine this specific plant disease image. Look at the exact symptoms visible: type and "
    "color of spots or lesions, pattern of discoloration, extent of damage, affected plant parts, and any "
    "visible pests or fungal growth. Diagnose the specific disease or condition affecting this plant based "
    "on what you actually observe in this image. Provide detailed, specific treatment recommendations for "
    "this exact condition. Do not give generic responses - analyze the unique symptoms you see."
)

PROBE_PROMPT = "What is a mango? Answer in one sentence."


def _plant_not_found(text: str) -> Dict[str, Any]:
    return {
        "plantName": "Unknown Plant",
        "scientificName": "N/A",
        "plantType": "Unable to identify",
        "family": "Unknown",
        "origin": "Unknown",
        "suitableEnvironment": text,
        "careInstructions": "Please consult a local botanist for accurate care instructions.",
        "growthHabit": "Unknown",
        "floweringSeason": "Unknown",
        "toxicity": "Unknown",
        "uses": "Unknown",
        "propagation": "Unknown",
        "commonProblems": "Unknown",
        "confidence": CONFIDENCE_NOT_FOUND,
    }


def _plant_parse_error(text: Optional[str]) -> Dict[str, Any]:
    return {
        "plantName": "Identification Error",
        "scientificName": "N/A",
        "plantType": "Analysis incomplete",
        "family": "Unknown",
        "origin": "Unknown",
        "suitableEnvironment": text or "Unable to analyze image",
        "careInstructions": "Please try again with a clearer image.",
        "growthHabit": "Unknown",
        "floweringSeason": "Unknown",
        "toxicity": "Unknown",
        "uses": "Unknown",
        "propagation": "Unknown",
        "commonProblems": "Unknown",
        "confidence": CONFIDENCE_PARSE_ERROR,
    }


def _disease_not_found(text: str) -> Dict[str, Any]:
    return {
        "diseaseName": "Unknown Condition",
        "severity": "unknown",
        "symptoms": text,
        "treatment": "Please consult a local agricultural expert for accurate diagnosis and treatment.",
        "prevention": "Maintain good plant hygiene and monitor regularly.",
        "confidence": CONFIDENCE_NOT_FOUND,
    }


def _disease_parse_error(text: Optional[str]) -> Dict[str, Any]:
    return {
        "diseaseName": "Diagnosis Error",
        "severity": "unknown",
        "symptoms": text or "Unable to analyze image",
        "treatment": "Please try again with a clearer image showing affected plant parts.",
        "prevention": "N/A",
        "confidence": CONFIDENCE_PARSE_ERROR,
    }


class AnalysisTask(NamedTuple):
    name: str
    prompt: str
    user_text: str
    fields: Tuple[str, ...]
    not_found: Callable[[str], Dict[str, Any]]
    parse_error: Callable[[Optional[str]], Dict[str, Any]]


PLANT_IDENTIFICATION = AnalysisTask(
    name="identify-plant",
    prompt=PLANT_PROMPT,
    user_text=PLANT_USER_TEXT,
    fields=PLANT_FIELDS,
    not_found=_plant_not_found,
    parse_error=_plant_parse_error,
)

DISEASE_DIAGNOSIS = AnalysisTask(
    name="diagnose-disease",
    prompt=DISEASE_PROMPT,
    user_text=DISEASE_USER_TEXT,
    fields=DISEASE_FIELDS,
    not_found=_disease_not_found,
    parse_error=_disease_parse_error,
)


class ProxyResponse(NamedTuple):
    status_code: int
    body: Dict[str, Any]


def _reject_constant(name: str):
    raise ValueError(f"Non-standard JSON constant: {name}")


def decode_model_answer(text: Optional[str]) -> Tuple[Optional[Dict[str, Any]], str]:
    """Extract the first brace-delimited JSON object from a model answer.

    Returns (object, PARSED), (None, NOT_FOUND) when the text has no brace
    span, or (None, PARSE_ERROR) when the span does not parse or the answer
    text is missing altogether.
    """
    if not isinstance(text, str):
        return None, PARSE_ERROR
    match = JSON_OBJECT_RE.search(text)
    if not match:
        return None, NOT_FOUND
    try:
        data = json.loads(match.group(0), parse_constant=_reject_constant)
    except ValueError:
        return None, PARSE_ERROR
    return data, PARSED


def build_result(task: AnalysisTask, text: Optional[str]) -> Dict[str, Any]:
    """Return the parsed object verbatim, or the task's fallback shape."""
    data, outcome = decode_model_answer(text)
    if outcome == PARSED:
        return data
    logger.warning("[%s] model answer not decodable (%s); returning fallback", task.name, outcome)
    if outcome == NOT_FOUND:
        return task.not_found(text)
    return task.parse_error(text)


def map_upstream_error(error: UpstreamStatusError) -> ProxyResponse:
    if error.status_code == 429:
        return ProxyResponse(429, {"error": RATE_LIMIT_MESSAGE})
    if error.status_code == 402:
        return ProxyResponse(402, {"error": CREDITS_MESSAGE})
    logger.error("AI gateway error (%s): %s %s", error.provider, error.status_code, error.body[:2000])
    return ProxyResponse(500, {"error": AI_SERVICE_ERROR})


def analyze_image(task: AnalysisTask, image_data: str,
                  environ: Optional[Mapping[str, str]] = None) -> ProxyResponse:
    """Run one analysis request end to end.

    Configuration is checked before any HTTP client is opened, so a missing
    credential never reaches the network.
    """
    try:
        provider = select_provider(environ)
    except ProviderConfigError as e:
        logger.error("[%s] %s", task.name, e)
        return ProxyResponse(500, {"error": str(e)})

    try:
        with open_http_client() as client:
            text = provider.complete(client, task.prompt, task.user_text, image_data)
    except UpstreamStatusError as e:
        return map_upstream_error(e)
    except (httpx.HTTPError, UpstreamResponseError) as e:
        logger.exception("[%s] upstream call to %s failed: %s", task.name, provider.name, e)
        return ProxyResponse(500, {"error": AI_SERVICE_ERROR})

    return ProxyResponse(200, build_result(task, text))


def identify_plant(image_data: str, environ: Optional[Mapping[str, str]] = None) -> ProxyResponse:
    return analyze_image(PLANT_IDENTIFICATION, image_data, environ=environ)


def diagnose_disease(image_data: str, environ: Optional[Mapping[str, str]] = None) -> ProxyResponse:
    return analyze_image(DISEASE_DIAGNOSIS, image_data, environ=environ)


def probe_gemini(image_data: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None) -> ProxyResponse:
    """Text-only Gemini round trip to check the key and quota."""
    api_key = config.get_api_key(GeminiProvider.key_var, environ=environ)
    logger.info("Gemini probe called; key exists=%s image chars=%d", bool(api_key), len(image_data or ""))
    if not api_key:
        return ProxyResponse(500, {"error": "GEMINI_API_KEY is not configured"})

    provider = GeminiProvider(api_key, environ=environ)
    try:
        with open_http_client() as client:
            text = provider.complete(client, PROBE_PROMPT)
    except UpstreamStatusError as e:
        logger.error("Gemini probe failed: %s %s", e.status_code, e.body[:2000])
        return ProxyResponse(500, {
            "error": f"API test failed: {e.status_code} - {e.body}",
            "apiKeyExists": True,
            "apiKeyLength": len(api_key),
        })
    except (httpx.HTTPError, UpstreamResponseError) as e:
        logger.exception("Gemini probe transport error")
        return ProxyResponse(500, {"error": str(e)})

    return ProxyResponse(200, {
        "success": True,
        "testResult": text,
        "message": "Gemini API is working correctly",
    })
