# communityeats/core/rate_limit.py

from slowapi import Limiter
from slowapi.util import get_remote_address

from communityeats.core.config import Settings

# Initialize limiter; create_app() applies settings through configure_limits()
limiter = Limiter(key_func=get_remote_address)

# Rate limit constants
UPLOAD_LIMIT = "20/minute"
CONVERSATION_LIMIT = "30/minute"
DEFAULT_MESSAGE_LIMIT = "30/minute"

_message_limit = DEFAULT_MESSAGE_LIMIT


def configure_limits(settings: Settings):
    """Apply the app's settings to the shared limiter."""
    global _message_limit

    limiter.enabled = settings.rate_limit_enabled
    _message_limit = settings.message_rate_limit or DEFAULT_MESSAGE_LIMIT


def message_limit() -> str:
    """Per-client limit on posting messages, evaluated on every request."""
    return _message_limit
