"""Environment configuration, constants, and .env loading.

WHY: The relay needs four secrets (WhatsApp verify token, WhatsApp bearer
token, phone number ID, Gemini API key) plus a handful of tunables. All
of them come from the environment so nothing secret lives in source.

HOW: python-dotenv loads the .env file on import. load_settings() reads
os.environ into an immutable Settings dataclass which the app factory
receives explicitly. Fixed protocol constants are module-level values.

RULES:
- Missing secrets are logged, never fatal (calls fail downstream instead)
- Unparsable or non-positive numbers fall back to their defaults
- The verify token is never logged
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fixed constants
# ---------------------------------------------------------------------------

GRAPH_API_ROOT = "https://graph.facebook.com"
GEMINI_API_ROOT = "https://generativelanguage.googleapis.com"

MAX_INLINE_BYTES = 20 * 1024 * 1024  # 20 MB, Gemini inline_data limit
"""Payloads larger than this must go through the resumable Files API."""

MP3_MIME_TYPES = frozenset({"audio/mpeg", "audio/mp3"})

SUMMARY_PROMPT = (
    "Summarize the key points from this WhatsApp voice message in two "
    "concise sentences. If the clip is not speech, describe any notable sounds."
)

OPT_OUT_FILENAME = "opt-outs.json"
USAGE_LOG_FILENAME = "usage.log"

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_GRAPH_VERSION = "v19.0"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_RATE_LIMIT_WINDOW_MS = 15000
DEFAULT_HTTP_TIMEOUT_S = 60.0
DEFAULT_TRANSCODE_TIMEOUT_S = 120.0

# Env var → Settings field for values without which the relay cannot work
REQUIRED_SETTINGS: Dict[str, str] = {
    "META_VERIFY_TOKEN": "verify_token",
    "META_WABA_TOKEN": "waba_token",
    "META_PHONE_ID": "phone_id",
    "GEMINI_API_KEY": "gemini_api_key",
}


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one relay instance.

    WHY: Handlers, clients, and state stores all need configuration.
    Passing one frozen object keeps them testable and lets tests build
    isolated instances without touching os.environ.

    RULES:
    - Secrets default to "" (missing), never to a placeholder
    - data_dir holds opt-outs.json and usage.log
    """

    verify_token: str = ""
    waba_token: str = ""
    phone_id: str = ""
    gemini_api_key: str = ""
    graph_version: str = DEFAULT_GRAPH_VERSION
    gemini_model: str = DEFAULT_GEMINI_MODEL
    rate_limit_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    data_dir: Path = Path("data")
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    transcode_timeout_s: float = DEFAULT_TRANSCODE_TIMEOUT_S
    ffmpeg_path: str = "ffmpeg"
    log_level: str = "INFO"

    @property
    def opt_out_path(self) -> Path:
        return self.data_dir / OPT_OUT_FILENAME

    @property
    def usage_log_path(self) -> Path:
        return self.data_dir / USAGE_LOG_FILENAME

    def missing_required(self) -> List[str]:
        """Return env var names of required settings that are empty."""
        return [
            env_name
            for env_name, field_name in REQUIRED_SETTINGS.items()
            if not getattr(self, field_name)
        ]


def _positive_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    return value if value > 0 else default


def _positive_float(raw: Optional[str], default: float) -> float:
    try:
        value = float(raw) if raw is not None else default
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment.

    WHY: Single place that knows env var names and defaults.

    HOW: Reads each variable from `environ` (os.environ by default),
    stripping whitespace. Numeric values go through a lenient parser.

    RULES:
    - environ=None means os.environ (populated by python-dotenv)
    - Never raises for missing or malformed values
    """
    env = os.environ if environ is None else environ

    def _str(name: str, default: str = "") -> str:
        return (env.get(name) or default).strip()

    return Settings(
        verify_token=_str("META_VERIFY_TOKEN"),
        waba_token=_str("META_WABA_TOKEN"),
        phone_id=_str("META_PHONE_ID"),
        gemini_api_key=_str("GEMINI_API_KEY"),
        graph_version=_str("META_GRAPH_VERSION", DEFAULT_GRAPH_VERSION),
        gemini_model=_str("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
        rate_limit_window_ms=_positive_int(
            env.get("RATE_LIMIT_MS"), DEFAULT_RATE_LIMIT_WINDOW_MS
        ),
        port=_positive_int(env.get("PORT"), DEFAULT_PORT),
        host=_str("HOST", DEFAULT_HOST),
        data_dir=Path(_str("DATA_DIR", "data")),
        http_timeout_s=_positive_float(
            env.get("HTTP_TIMEOUT_S"), DEFAULT_HTTP_TIMEOUT_S
        ),
        transcode_timeout_s=_positive_float(
            env.get("TRANSCODE_TIMEOUT_S"), DEFAULT_TRANSCODE_TIMEOUT_S
        ),
        ffmpeg_path=_str("FFMPEG_PATH", "ffmpeg"),
        log_level=_str("LOG_LEVEL", "INFO").upper(),
    )


def log_missing_settings(settings: Settings) -> List[str]:
    """Warn once per missing required setting and return their names."""
    missing = settings.missing_required()
    for name in missing:
        logger.warning("Missing %s. Check your env configuration.", name)
    return missing
