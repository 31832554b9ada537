"""Reply texts and the text-command vocabulary.

WHY: Every message the relay sends to a user lives here, so wording can
change without touching the pipeline or dispatcher. The command parser
sits next to the replies it selects.

HOW: Plain string constants, one builder for the summary reply, and
parse_command() which maps an inbound text body to a Command.

RULES:
- Commands match case-insensitively, with or without a leading "/"
- The summary reply always ends with the compliance footer
- Unknown text (including an empty-after-trim body) is not a command
"""

from __future__ import annotations

import enum
from typing import Optional

# ---------------------------------------------------------------------------
# Reply texts
# ---------------------------------------------------------------------------

COMPLIANCE_FOOTER = "Generated automatically with Google Gemini. Reply STOP to opt out."

SUMMARY_HEADER = "Here is the summary of that voice note:"

NO_SUMMARY_REPLY = (
    "I could not understand the voice note well enough to summarize it. "
    "Please try again or type HUMAN to reach support."
)

FAILURE_REPLY = (
    "Sorry, I couldn’t summarize that audio clip. "
    "Please try again later or reply HUMAN for assistance."
)

RATE_LIMITED_REPLY = (
    "I’m still working on your previous request. "
    "Please wait a few seconds before sending another voice note."
)

OPT_OUT_REPLY = (
    "You have opted out of summaries. "
    "Reply START if you want to resume automated processing."
)

OPT_IN_REPLY = (
    "You are back in! Forward a voice message and I’ll send a quick summary."
)

HUMAN_REPLY = "Thanks for your message. A human teammate will follow up shortly."

HELP_REPLY = (
    "Send me a WhatsApp voice note (or forward one) and I’ll reply with "
    "a short summary. Reply STOP to opt out."
)

PREFERENCE_FAILED_REPLY = (
    "Sorry, I couldn’t update your preferences just now. Please send that again."
)


def build_summary_reply(summary: Optional[str]) -> str:
    """Return the reply body for a summarization result.

    RULES:
    - Non-empty summary → header, summary, compliance footer
    - None or blank → NO_SUMMARY_REPLY
    """
    if not summary or not summary.strip():
        return NO_SUMMARY_REPLY
    return "{}\n\n{}\n\n{}".format(SUMMARY_HEADER, summary.strip(), COMPLIANCE_FOOTER)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class Command(str, enum.Enum):
    """Text commands a user can send."""

    STOP = "stop"
    START = "start"
    HUMAN = "human"


def parse_command(body: str) -> Optional[Command]:
    """Map a text body to a Command, or None for free text."""
    normalized = body.strip().lower()
    if normalized.startswith("/"):
        normalized = normalized[1:]
    try:
        return Command(normalized)
    except ValueError:
        return None


COMMAND_REPLIES = {
    Command.STOP: OPT_OUT_REPLY,
    Command.START: OPT_IN_REPLY,
    Command.HUMAN: HUMAN_REPLY,
}
