"""
Studio chat: agentes especializados y orquestador por palabras clave.
"""

from app.services.studio.agents import AGENTS, AgentResponse, StudioAgent, StudioContext, build_config_context
from app.services.studio.orchestrator import (
    StudioOrchestrator,
    create_fallback_response,
    get_studio_orchestrator,
    select_agents,
)

__all__ = [
    "AGENTS",
    "AgentResponse",
    "StudioAgent",
    "StudioContext",
    "StudioOrchestrator",
    "build_config_context",
    "create_fallback_response",
    "get_studio_orchestrator",
    "select_agents",
]
