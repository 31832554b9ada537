"""Container for the per-app state objects and collaborators.

WHY: The pipeline, dispatcher, and HTTP layer all need the same opt-out
registry, admission controller, usage log, and API clients. Bundling
them in one object keeps constructor signatures short and lets tests
swap any collaborator for a fake.

RULES:
- One RelayServices per app instance; never a module global
- build_services() creates clients that still need to be entered
"""

from __future__ import annotations

from dataclasses import dataclass

from voicenote_relay.api.gemini import GeminiClient
from voicenote_relay.api.whatsapp import WhatsAppClient
from voicenote_relay.config import Settings
from voicenote_relay.core.admission import AdmissionController
from voicenote_relay.core.optout import OptOutRegistry
from voicenote_relay.core.usage import UsageLog
from voicenote_relay.media.transcoder import MediaTranscoder


@dataclass
class RelayServices:
    settings: Settings
    opt_outs: OptOutRegistry
    admission: AdmissionController
    usage: UsageLog
    whatsapp: WhatsAppClient
    gemini: GeminiClient
    transcoder: MediaTranscoder


def build_services(settings: Settings) -> RelayServices:
    """Create real collaborators from settings (clients not yet opened)."""
    return RelayServices(
        settings=settings,
        opt_outs=OptOutRegistry(settings.opt_out_path),
        admission=AdmissionController(settings.rate_limit_window_ms),
        usage=UsageLog(settings.usage_log_path),
        whatsapp=WhatsAppClient(
            access_token=settings.waba_token,
            phone_id=settings.phone_id,
            graph_version=settings.graph_version,
            timeout_s=settings.http_timeout_s,
        ),
        gemini=GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_s=settings.http_timeout_s,
        ),
        transcoder=MediaTranscoder(
            ffmpeg_path=settings.ffmpeg_path,
            timeout_s=settings.transcode_timeout_s,
        ),
    )
