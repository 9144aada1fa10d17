"""
Per-IP rate limiting for the expensive endpoints.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from kobo_insights.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def analysis_rate_limit() -> str:
    """Limit string read from the current settings on every request."""
    return f"{get_settings().rate_limit_per_minute}/minute"
