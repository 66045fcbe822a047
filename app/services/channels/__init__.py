"""Outbound channels: speech synthesis and message delivery.

Use explicit imports:
    from app.services.channels.voice import ElevenLabsSynthesizer
    from app.services.channels.whatsapp import WhatsAppSender
"""

import httpx


def is_transient(error: Exception) -> bool:
    """Network failure, 5xx or 429: safe to retry an idempotent request."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, httpx.TransportError)
