"""Relay core: per-user state and the audio pipeline.

WHY: The stateful parts of the relay (who opted out, who is throttled,
what happened) and the orchestration that uses them are kept apart from
HTTP transport details so they can be tested with plain fakes.

HOW: OptOutRegistry, AdmissionController, and UsageLog hold state.
AudioPipeline runs one voice note end to end; server.dispatcher routes
inbound messages to the pipeline or to text-command handling.

RULES:
- State objects are owned by the app instance, never module globals
- Only the dispatcher and pipeline talk to external clients
"""

from voicenote_relay.core.admission import AdmissionController, AdmissionDecision
from voicenote_relay.core.optout import OptOutPersistenceError, OptOutRegistry
from voicenote_relay.core.usage import UsageEvent, UsageLog

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "OptOutPersistenceError",
    "OptOutRegistry",
    "UsageEvent",
    "UsageLog",
]
