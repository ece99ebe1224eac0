"""Pydantic models for the stateless chat request."""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(
        description="Full conversation, oldest first; the last message must come from the user"
    )

    @field_validator("messages")
    @classmethod
    def _last_message_from_user(cls, messages: List[ChatMessage]) -> List[ChatMessage]:
        if not messages:
            raise ValueError("messages must not be empty")
        if messages[-1].role != Role.USER:
            raise ValueError("the last message must have role 'user'")
        if not messages[-1].content.strip():
            raise ValueError("the last message must not be blank")
        return messages
