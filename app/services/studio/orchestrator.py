"""
Orquestador multi-agente del studio.

Selecciona agentes por palabras clave, los ejecuta en paralelo y combina
sus respuestas en un único mensaje.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.services.studio.agents import (
    AgentResponse,
    StudioContext,
    create_openai_client,
    get_agent,
)

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_AGENT = "frame-advisor"
FALLBACK_CONFIDENCE = 0.3

AGENT_KEYWORDS: Dict[str, tuple] = {
    "prodigi-config": (
        "sku",
        "product code",
        "configuration",
        "prodigi",
        "api",
        "technical",
        "attribute",
        "frame type",
        "product type",
    ),
    "frame-advisor": (
        "recommend",
        "suggest",
        "example",
        "show me",
        "what",
        "which",
        "quality",
        "size",
        "sizing",
        "frame color",
        "mount",
        "glaze",
        "compare",
        "difference",
        "better",
        "best",
    ),
    "image-generation": (
        "generate",
        "create",
        "make an image",
        "ai image",
        "ideogram",
        "artificial",
        "ai art",
        "generate image",
    ),
    "pricing-advisor": (
        "price",
        "cost",
        "expensive",
        "cheap",
        "budget",
        "affordable",
        "how much",
        "pricing",
        "save money",
        "discount",
    ),
}

FALLBACK_MESSAGES = {
    "prodigi-config": (
        "I can help with Prodigi configuration. For technical questions about SKUs and product "
        "attributes, please check the product catalog or contact support."
    ),
    "frame-advisor": (
        "I recommend black frames for modern artwork, white for gallery-style looks, and natural wood "
        "for warm, classic aesthetics. Would you like more specific recommendations?"
    ),
    "pricing-advisor": (
        "Pricing varies by size, product type, and options. A 16x20 framed print typically costs "
        "$45-55. Premium options like motheye glazing add $10-20."
    ),
    "image-generation": (
        "I can help you create AI images for framing. Describe what you want to create, and I'll help "
        "refine your prompt for the best results."
    ),
}
DEFAULT_FALLBACK_MESSAGE = "I'm having trouble with that request right now. Could you try rephrasing your question?"

SYNTHESIS_PROMPT = """You are synthesizing responses from multiple AI agents to create a coherent, helpful answer for the user.

User's question: "{user_message}"

Agent responses:
{agent_responses}

Create a single, coherent response that:
1. Combines the best information from all agents
2. Eliminates redundancy
3. Maintains a natural, conversational tone
4. Prioritizes the most relevant information
5. Is concise but complete

Response:"""


def select_agents(user_message: str) -> List[str]:
    """
    Elige los agentes para un mensaje.

    Cada agente cuyo listado de palabras clave aparezca en el mensaje se
    selecciona, en orden fijo. Sin coincidencias se usa ``frame-advisor``;
    si hay un único agente distinto, ``frame-advisor`` lo acompaña.

    Args:
        user_message: Mensaje del usuario

    Returns:
        List[str]: Nombres de agentes seleccionados
    """
    lowered = (user_message or "").lower()
    selected = [
        name for name, keywords in AGENT_KEYWORDS.items() if any(keyword in lowered for keyword in keywords)
    ]

    if not selected:
        selected.append(DEFAULT_AGENT)

    if DEFAULT_AGENT not in selected and len(selected) < 2:
        selected.append(DEFAULT_AGENT)

    return selected


def create_fallback_response(agent_name: str, error: BaseException) -> AgentResponse:
    return AgentResponse(
        agent=agent_name,
        content=FALLBACK_MESSAGES.get(agent_name, DEFAULT_FALLBACK_MESSAGE),
        confidence=FALLBACK_CONFIDENCE,
        metadata={"error": str(error) or "Unknown error", "fallback": True},
    )


class StudioOrchestrator:
    """
    Coordina los agentes del studio para una petición de chat.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> Optional[AsyncOpenAI]:
        if self._client is None:
            self._client = create_openai_client()
        return self._client

    async def _execute_agent(self, agent_name: str, user_message: str, context: StudioContext) -> AgentResponse:
        try:
            return await get_agent(agent_name).run(user_message, context, client=self.client)
        except Exception as e:
            logger.error(f"❌ Error ejecutando agente {agent_name}: {e}")
            return create_fallback_response(agent_name, e)

    async def route_to_agents(self, user_message: str, context: StudioContext) -> List[AgentResponse]:
        """
        Ejecuta en paralelo los agentes seleccionados para el mensaje.

        Args:
            user_message: Último mensaje del usuario
            context: Contexto compartido

        Returns:
            List[AgentResponse]: Una respuesta por agente, con fallback si falló
        """
        agent_names = select_agents(user_message)
        logger.info(f"🔄 Studio chat -> agentes: {', '.join(agent_names)}")

        return list(
            await asyncio.gather(*(self._execute_agent(name, user_message, context) for name in agent_names))
        )

    async def synthesize_responses(self, responses: List[AgentResponse], user_message: str) -> str:
        """
        Combina las respuestas de los agentes en un solo mensaje.

        Con una sola respuesta se devuelve tal cual. Con varias se pide una
        síntesis a OpenAI; si falla, gana la de mayor confianza.

        Args:
            responses: Respuestas de ``route_to_agents``
            user_message: Pregunta original

        Returns:
            str: Mensaje final para el usuario
        """
        if not responses:
            return DEFAULT_FALLBACK_MESSAGE

        if len(responses) == 1:
            return responses[0].content

        best = max(responses, key=lambda response: response.confidence or 0)

        if self.client is None:
            return best.content

        prompt = SYNTHESIS_PROMPT.format(
            user_message=user_message,
            agent_responses="\n\n".join(
                f"Agent {index} ({response.agent}): {response.content}"
                for index, response in enumerate(responses, start=1)
            ),
        )

        try:
            completion = await self.client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.OPENAI_TEMPERATURE,
            )
        except openai.OpenAIError as e:
            logger.warning(f"⚠️ Síntesis de respuestas falló, usando la de mayor confianza: {e}")
            return best.content

        return (completion.choices[0].message.content or "").strip() or best.content

    async def chat(self, user_message: str, context: StudioContext) -> Dict[str, Any]:
        """
        Flujo completo de una petición de chat.

        Returns:
            Dict: ``{content, agents, responses}``
        """
        responses = await self.route_to_agents(user_message, context)
        content = await self.synthesize_responses(responses, user_message)
        return {
            "content": content,
            "agents": [response.agent for response in responses],
            "responses": [response.to_dict() for response in responses],
        }


_studio_orchestrator: Optional[StudioOrchestrator] = None


def get_studio_orchestrator() -> StudioOrchestrator:
    global _studio_orchestrator
    if _studio_orchestrator is None:
        _studio_orchestrator = StudioOrchestrator()
    return _studio_orchestrator
