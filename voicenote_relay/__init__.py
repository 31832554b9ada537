"""Voice-note relay: WhatsApp audio in, Gemini summary out.

WHY: People forward long voice notes. This service receives WhatsApp
Cloud API webhooks, sends each voice note to Gemini for a two-sentence
summary, and replies to the sender with the result.

HOW: Four layers. A FastAPI webhook server with its dispatcher (server/), an
audio pipeline with per-user admission and opt-out state (core/), thin
async HTTP clients for WhatsApp and Gemini (api/), and an ffmpeg wrapper
(media/). State objects are created once per app and injected.

RULES:
- Webhooks are acknowledged before any processing starts
- One user's failure never affects another message
- Opt-out state is persisted on every change
"""

__version__ = "0.1.0"
