"""
Endpoints del studio: chat con los agentes y precio en vivo de la configuración.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import get_pricing, get_studio
from app.api.v1.schemas.studio_schemas import StudioChatRequest, StudioPricingRequest
from app.services.pricing import PricingService
from app.services.studio import StudioContext, StudioOrchestrator
from app.utils.error_handler import ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat")
async def studio_chat(
    request: StudioChatRequest, orchestrator: StudioOrchestrator = Depends(get_studio)
) -> Dict[str, Any]:
    """
    Responde el último mensaje del usuario con los agentes que correspondan.

    Returns:
        Dict: ``{message: {role, content}, agents, responses}``
    """
    user_message = request.last_user_message()
    if not user_message or not user_message.strip():
        raise ValidationException("A user message is required", field="messages", status_code=400)

    context = StudioContext(
        frame_config=request.frame_config,
        image_analysis=request.image_analysis,
        conversation_history=request.history(),
    )
    result = await orchestrator.chat(user_message, context)
    logger.info(f"Studio chat answered by {', '.join(result['agents'])}")

    return {
        "message": {"role": "assistant", "content": result["content"]},
        "agents": result["agents"],
        "responses": result["responses"],
    }


@router.post("/pricing")
async def studio_pricing(
    request: StudioPricingRequest, pricing: PricingService = Depends(get_pricing)
) -> Dict[str, Any]:
    return await pricing.quote_studio_config(request.config, request.country.upper())
