"""
Vision provider adapters.

Each adapter wraps one multimodal AI service behind the same capability:
send a prompt plus an image (as a data URL) and return the model's free-text
answer. Adapters are tried in a fixed preference order and the first one whose
credential is configured is used:

1. Lovable AI gateway   (chat-completions shape, bearer auth)
2. OpenAI               (chat-completions shape, bearer auth)
3. Google Gemini        (generate-content shape, key as query parameter)
"""
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from agrisense import config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for upstream AI failures."""


class ProviderConfigError(ProviderError):
    """No provider credential is configured."""


class UpstreamStatusError(ProviderError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} returned HTTP {status_code}")


class UpstreamResponseError(ProviderError):
    """The provider answered 2xx but the envelope was not JSON."""


def split_data_url(image_data: str) -> Tuple[str, str]:
    """Split `data:<mime>;base64,<payload>` into (mime_type, payload).

    A string without a comma is treated as a bare base64 payload.
    """
    header, sep, payload = (image_data or "").partition(",")
    if not sep:
        return "image/jpeg", header
    mime = ""
    if header.startswith("data:"):
        mime = header[5:].split(";")[0].strip()
    return mime or "image/jpeg", payload


def open_http_client() -> httpx.Client:
    """HTTP client used for one upstream call; callers close it."""
    return httpx.Client(timeout=config.get_ai_timeout())


class VisionProvider:
    """Common request/response handling for all adapters."""

    name = ""
    key_var = ""

    def __init__(self, api_key: str, environ: Optional[Mapping[str, str]] = None):
        self.api_key = api_key
        self.model = config.get_model(self.name, environ=environ)
        self.environ = environ

    def build_request(self, prompt: str, user_text: str,
                      image_data: Optional[str]) -> Tuple[str, Dict[str, Any], Dict[str, str], Dict[str, Any]]:
        """Return (url, query params, headers, json payload)."""
        raise NotImplementedError

    def extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def complete(self, client: httpx.Client, prompt: str, user_text: str = "",
                 image_data: Optional[str] = None) -> Optional[str]:
        """Issue exactly one request and return the model's answer text.

        Returns None when the envelope parses but carries no answer field.
        """
        url, params, headers, payload = self.build_request(prompt, user_text, image_data)
        logger.info("[%s] calling model=%s image_chars=%d", self.name, self.model, len(image_data or ""))
        response = client.post(url, params=params or None, headers=headers, json=payload)
        logger.info("[%s] response status: %s", self.name, response.status_code)
        if not response.is_success:
            raise UpstreamStatusError(self.name, response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamResponseError(f"{self.name} returned a non-JSON body: {e}")
        if not isinstance(data, dict):
            return None
        return self.extract_text(data)


class ChatCompletionsProvider(VisionProvider):
    """OpenAI-compatible `/chat/completions` request shape."""

    url = ""
    max_tokens: Optional[int] = None

    def endpoint(self) -> str:
        return self.url

    def build_request(self, prompt, user_text, image_data):
        content: Any
        if image_data:
            content = [
                {"type": "text", "text": user_text},
                {"type": "image_url", "image_url": {"url": image_data}},
            ]
        else:
            content = user_text
        messages = []
        if prompt:
            messages.append({"role": "system", "content": prompt})
        messages.append({"role": "user", "content": content})

        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return self.endpoint(), {}, headers, payload

    def extract_text(self, data):
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        message = choices[0].get("message") or {}
        return message.get("content")


class LovableProvider(ChatCompletionsProvider):
    name = "lovable"
    key_var = "LOVABLE_API_KEY"

    def endpoint(self):
        return config.get_env("LOVABLE_GATEWAY_URL", config.LOVABLE_GATEWAY_URL, environ=self.environ)


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    key_var = "OPENAI_API_KEY"
    max_tokens = 1000

    def endpoint(self):
        return config.get_env("OPENAI_API_URL", config.OPENAI_API_URL, environ=self.environ)


class GeminiProvider(VisionProvider):
    """Gemini REST `models/<model>:generateContent`."""

    name = "gemini"
    key_var = "GEMINI_API_KEY"

    def build_request(self, prompt, user_text, image_data):
        text = "\n\n".join(t for t in (prompt, user_text) if t)
        parts: list = [{"text": text}]
        if image_data:
            mime_type, b64 = split_data_url(image_data)
            parts.append({"inline_data": {"mime_type": mime_type, "data": b64}})

        payload: Dict[str, Any] = {"contents": [{"parts": parts}]}
        if image_data:
            payload["generationConfig"] = {
                "temperature": 0.1,
                "maxOutputTokens": 1000,
            }
        base = config.get_env("GEMINI_API_BASE", config.GEMINI_API_BASE, environ=self.environ).rstrip("/")
        url = f"{base}/{self.model}:generateContent"
        return url, {"key": self.api_key}, {"Content-Type": "application/json"}, payload

    def extract_text(self, data):
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts or not isinstance(parts[0], dict):
            return None
        return parts[0].get("text")


PROVIDERS = (LovableProvider, OpenAIProvider, GeminiProvider)

NO_PROVIDER_MESSAGE = (
    "No AI API key configured. Please add LOVABLE_API_KEY, OPENAI_API_KEY, "
    "or GEMINI_API_KEY to your environment variables."
)


def select_provider(environ: Optional[Mapping[str, str]] = None) -> VisionProvider:
    """Return the first adapter whose credential is present."""
    for provider_cls in PROVIDERS:
        api_key = config.get_api_key(provider_cls.key_var, environ=environ)
        if api_key:
            logger.debug("Selected vision provider %s", provider_cls.name)
            return provider_cls(api_key, environ=environ)
    raise ProviderConfigError(NO_PROVIDER_MESSAGE)
