"""Health check endpoint."""

from datetime import datetime, timezone

from ...usage_metrics import USAGE_COUNTERS

SERVICE_NAME = "claude-openai-wrapper"


async def health() -> dict:
    """GET /health"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "requests": USAGE_COUNTERS.snapshot(),
    }
