"""Models listing endpoint - OpenAI compatible."""

import logging
import time

from ...core.registry import get_settings

logger = logging.getLogger("cliproxy")


async def list_models() -> dict:
    """List available models in OpenAI API format.

    GET /v1/models

    The CLI cannot enumerate its models, so the configured ids are listed.
    """
    logger.info("Received models list request")
    settings = get_settings()
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {
                "id": model_id,
                "object": "model",
                "created": created,
                "owned_by": "claude",
            }
            for model_id in settings.models
        ],
    }
