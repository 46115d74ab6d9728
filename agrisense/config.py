"""Environment-backed configuration.

Values are read lazily through small getters so a `.env` loaded at startup
(or a test that patches `os.environ`) is always honoured.
"""
import os
from typing import Mapping, Optional


LOVABLE_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
LOVABLE_DEFAULT_MODEL = "google/gemini-2.5-flash"
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_DEFAULT_MODEL = "gpt-4o"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_DEFAULT_MODEL = "gemini-1.5-flash"

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
REVERSE_GEOCODE_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


def get_env(name: str, default: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    """Return a stripped environment value, or `default` when unset or blank."""
    env = os.environ if environ is None else environ
    value = (env.get(name) or "").strip()
    return value or default


def get_api_key(name: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the first whitespace-delimited token of a credential variable.

    Guards against trailing comments pasted into `.env` files.
    """
    raw = get_env(name, environ=environ)
    return raw.split()[0] if raw else ""


def get_ai_timeout() -> float:
    try:
        return float(get_env("AI_REQUEST_TIMEOUT", "60"))
    except ValueError:
        return 60.0


def get_model(provider: str, environ: Optional[Mapping[str, str]] = None) -> str:
    defaults = {
        "lovable": LOVABLE_DEFAULT_MODEL,
        "openai": OPENAI_DEFAULT_MODEL,
        "gemini": GEMINI_DEFAULT_MODEL,
    }
    return get_env(f"{provider.upper()}_MODEL", defaults[provider], environ=environ)


def get_supabase_url() -> str:
    return get_env("SUPABASE_URL")


def get_supabase_key() -> str:
    return get_env("SUPABASE_KEY") or get_env("SUPABASE_ANON_KEY")


def get_jwt_secret() -> str:
    return get_env("SUPABASE_JWT_SECRET")


def get_log_level() -> str:
    return get_env("LOG_LEVEL", "INFO").upper()
