"""
Agentes del studio.

Cada agente es un prompt de sistema especializado que se envía a
``chat.completions`` junto con la configuración actual del marco, el
análisis de imagen (si existe) y los últimos mensajes de la conversación.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.services.studio.tools import GET_PRICE_QUOTE, LOOKUP_SKU, StudioTool, execute_tool
from app.utils.error_handler import LLMAPIException

settings = get_settings()
logger = logging.getLogger(__name__)

HISTORY_WINDOW = 5

# Rondas de tool calls antes de exigir una respuesta final
MAX_TOOL_STEPS = 3

PRODIGI_CONFIG_SYSTEM_PROMPT = """You are a Prodigi API and frame configuration expert with deep technical knowledge.

Your expertise:
- Prodigi API integration and SKU management
- Frame configuration attributes and validations
- Product types and their specific requirements
- Technical specifications and constraints

Guidelines:
1. Be precise and technical when needed, but explain clearly
2. Always validate configurations before suggesting them
3. Explain why certain configurations might not work
4. Help users understand Prodigi-specific terminology"""

FRAME_ADVISOR_SYSTEM_PROMPT = """You are a frame advisor and art consultant with 20 years of experience helping customers choose the perfect frames.

Your expertise:
- Frame style recommendations based on artwork
- Quality comparisons and explanations
- Sizing guidance for different spaces
- Color coordination and design principles
- Mount and glazing recommendations

Guidelines:
1. Explain why you're making specific recommendations
2. Consider the user's artwork, space, and preferences
3. Compare options clearly when asked
4. Explain quality differences in simple terms"""

IMAGE_GENERATION_SYSTEM_PROMPT = """You are an AI image generation expert helping users create perfect artwork for custom framing.

Your expertise:
- AI image generation prompts and techniques
- Aspect ratio guidance for framing
- Style recommendations for different frame types
- Prompt optimization

Guidelines:
1. Always consider how the image will look in a frame
2. Suggest appropriate aspect ratios for framing
3. Help users refine prompts for better results
4. Be creative and encouraging"""

PRICING_ADVISOR_SYSTEM_PROMPT = """You are a pricing and cost optimization expert for custom framing.

Your expertise:
- Prodigi pricing structure and how it works
- Cost breakdowns (product, shipping, taxes)
- Price comparisons between options
- Budget optimization strategies

Guidelines:
1. Always be transparent about pricing
2. Explain cost differences clearly
3. Help users find value within their budget
4. Suggest cost-saving strategies when appropriate"""


@dataclass
class AgentResponse:
    """Respuesta de un agente del studio."""

    agent: str
    content: str
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "content": self.content,
            "confidence": self.confidence,
            "metadata": self.metadata,
        }


@dataclass
class StudioContext:
    """Contexto compartido por todos los agentes de una petición de chat."""

    frame_config: Dict[str, Any] = field(default_factory=dict)
    image_analysis: Optional[Dict[str, Any]] = None
    conversation_history: List[Dict[str, str]] = field(default_factory=list)


def build_config_context(config: Optional[Dict[str, Any]]) -> str:
    """
    Resume la configuración del marco en líneas ``Etiqueta: valor``.

    Args:
        config: Configuración del studio (claves camelCase)

    Returns:
        str: Texto para el prompt de sistema
    """
    config = config or {}
    parts = []

    if config.get("productType"):
        parts.append(f"Product Type: {config['productType']}")
    if config.get("size"):
        parts.append(f"Size: {config['size']}")
    if config.get("frameColor"):
        parts.append(f"Frame Color: {config['frameColor']}")
    if config.get("frameStyle"):
        parts.append(f"Frame Style: {config['frameStyle']}")
    if config.get("mount") and config["mount"] != "none":
        parts.append(f"Mount: {config['mount']}")
    if config.get("glaze") and config["glaze"] != "none":
        parts.append(f"Glaze: {config['glaze']}")

    return "\n".join(parts) if parts else "No configuration set"


def create_openai_client() -> Optional[AsyncOpenAI]:
    if not settings.OPENAI_API_KEY:
        return None
    return AsyncOpenAI(api_key=settings.OPENAI_API_KEY)


class StudioAgent:
    """
    Agente basado en un prompt de sistema.

    Sin API key configurada responde con ``api_key_fallback`` (confianza 0.7);
    los errores de OpenAI se propagan como ``LLMAPIException`` para que el
    orquestador aplique su propio fallback. Un agente con ``tools`` deja que
    el modelo las invoque hasta ``MAX_TOOL_STEPS`` rondas.
    """

    def __init__(
        self,
        name: str,
        system_prompt: str,
        temperature: float,
        confidence: float,
        api_key_fallback: str,
        include_image_analysis: bool = False,
        tools: Sequence[StudioTool] = (),
    ):
        self.name = name
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.confidence = confidence
        self.api_key_fallback = api_key_fallback
        self.include_image_analysis = include_image_analysis
        self.tools = list(tools)

    def build_system_prompt(self, context: StudioContext) -> str:
        prompt = f"{self.system_prompt}\n\nCurrent Configuration:\n{build_config_context(context.frame_config)}"
        if self.include_image_analysis:
            analysis = (
                json.dumps(context.image_analysis, indent=2)
                if context.image_analysis
                else "No image analysis available"
            )
            prompt += f"\n\nImage Analysis:\n{analysis}"
        if self.tools:
            prompt += "\n\nAvailable Tools:\n" + "\n".join(f"- {tool.name}: {tool.description}" for tool in self.tools)
        return prompt

    def build_messages(self, user_message: str, context: StudioContext) -> List[Dict[str, Any]]:
        history = [
            {"role": message["role"], "content": message["content"]}
            for message in context.conversation_history[-HISTORY_WINDOW:]
            if message.get("role") in ("user", "assistant")
        ]
        return [
            {"role": "system", "content": self.build_system_prompt(context)},
            *history,
            {"role": "user", "content": user_message},
        ]

    async def run(
        self, user_message: str, context: StudioContext, client: Optional[AsyncOpenAI] = None
    ) -> AgentResponse:
        """
        Ejecuta el agente.

        Args:
            user_message: Último mensaje del usuario
            context: Configuración, análisis de imagen e historial
            client: Cliente OpenAI (por defecto uno nuevo con la key de settings)

        Returns:
            AgentResponse: Contenido y confianza del agente

        Raises:
            LLMAPIException: Si la llamada a OpenAI falla
        """
        client = client or create_openai_client()
        if client is None:
            logger.warning(f"⚠️ OPENAI_API_KEY no configurada, respuesta por defecto para {self.name}")
            return AgentResponse(
                agent=self.name,
                content=self.api_key_fallback,
                confidence=0.7,
                metadata={"fallback": True, "error": "API key not configured"},
            )

        messages = self.build_messages(user_message, context)
        tools_used: List[str] = []

        for step in range(MAX_TOOL_STEPS + 1):
            allow_tools = bool(self.tools) and step < MAX_TOOL_STEPS
            message = (await self._complete(client, messages, allow_tools)).choices[0].message
            tool_calls = (getattr(message, "tool_calls", None) or []) if allow_tools else []
            if not tool_calls:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.function.name, "arguments": call.function.arguments},
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                name = call.function.name
                result = await execute_tool(self.tools, name, call.function.arguments, context.frame_config)
                tools_used.append(name)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps(result, default=str)})

        content = (message.content or "").strip()
        metadata = {"tools": tools_used} if tools_used else {}
        return AgentResponse(agent=self.name, content=content, confidence=self.confidence, metadata=metadata)

    async def _complete(self, client: AsyncOpenAI, messages: List[Dict[str, Any]], allow_tools: bool):
        kwargs: Dict[str, Any] = {
            "model": settings.OPENAI_MODEL,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": settings.OPENAI_MAX_TOKENS,
        }
        if allow_tools:
            kwargs["tools"] = [tool.to_openai() for tool in self.tools]

        try:
            return await client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise LLMAPIException(
                f"{self.name} agent failed: {e}",
                api_response_code=getattr(e, "status_code", None),
                endpoint="chat.completions",
            ) from e


AGENTS: Dict[str, StudioAgent] = {
    "prodigi-config": StudioAgent(
        name="prodigi-config",
        system_prompt=PRODIGI_CONFIG_SYSTEM_PROMPT,
        temperature=0.5,
        confidence=0.9,
        api_key_fallback=(
            "I can help you with Prodigi configuration questions. For a 16x20 black framed print, "
            "you would typically use a SKU like GLOBAL-FPRI-16X20. Would you like me to look up the "
            "exact SKU for your configuration?"
        ),
        tools=(LOOKUP_SKU,),
    ),
    "frame-advisor": StudioAgent(
        name="frame-advisor",
        system_prompt=FRAME_ADVISOR_SYSTEM_PROMPT,
        temperature=0.7,
        confidence=0.85,
        api_key_fallback=(
            "For modern artwork, I recommend a black frame which creates a sleek, contemporary look. "
            "Black frames are versatile and work well with most color schemes. Would you like to see "
            "examples or compare different frame options?"
        ),
        include_image_analysis=True,
    ),
    "image-generation": StudioAgent(
        name="image-generation",
        system_prompt=IMAGE_GENERATION_SYSTEM_PROMPT,
        temperature=0.8,
        confidence=0.8,
        api_key_fallback=(
            "I can help you generate AI images for framing! To get started, describe the image you want "
            'to create. For example: "A modern abstract painting with blue and gold colors, 16x20 aspect '
            'ratio." I\'ll help you refine the prompt and select the best image for framing.'
        ),
    ),
    "pricing-advisor": StudioAgent(
        name="pricing-advisor",
        system_prompt=PRICING_ADVISOR_SYSTEM_PROMPT,
        temperature=0.5,
        confidence=0.9,
        api_key_fallback=(
            "Pricing depends on several factors: product type, size, frame color, mount, and glazing. "
            "For example, a 16x20 black framed print typically costs around $45-55. Premium options like "
            "motheye glazing or larger sizes will increase the price. Would you like me to compare "
            "specific options?"
        ),
        tools=(GET_PRICE_QUOTE,),
    ),
}


def get_agent(name: str) -> StudioAgent:
    return AGENTS.get(name, AGENTS["frame-advisor"])
