"""
Modelos Pydantic del studio (chat y precio en vivo).
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class StudioChatRequest(BaseModel):
    """Conversación del studio con la configuración actual del marco."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(..., min_length=1)
    frame_config: Dict[str, Any] = Field(default_factory=dict, alias="frameConfig")
    image_analysis: Optional[Dict[str, Any]] = Field(None, alias="imageAnalysis")

    def last_user_message(self) -> Optional[str]:
        return next((message.content for message in reversed(self.messages) if message.role == "user"), None)

    def history(self) -> List[Dict[str, str]]:
        """Mensajes anteriores al último del usuario."""
        history = [message.model_dump() for message in self.messages]
        for index in range(len(history) - 1, -1, -1):
            if history[index]["role"] == "user":
                return history[:index]
        return history


class StudioPricingRequest(BaseModel):
    config: Optional[Dict[str, Any]] = None
    country: str = Field(default="US", min_length=2, max_length=2)
