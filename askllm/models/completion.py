"""Pydantic models for the upstream chat-completion API."""
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMessage(BaseModel):
    """Single message item in a chat conversation."""

    role: str = Field(..., description="Role of the author (system, user, assistant)")
    content: str = Field(..., description="Text content of the message")

    @field_validator("content", mode="before")
    @classmethod
    def null_content_as_empty(cls, value: Optional[str]) -> str:
        return "" if value is None else value


class CompletionRequest(BaseModel):
    """Request payload sent to the chat completions endpoint."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., description="Identifier of the upstream model")
    messages: List[ChatMessage] = Field(..., min_length=1)
    stream: bool = Field(default=False, description="Streaming is never requested")
    max_tokens: int = Field(default=1024, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    @classmethod
    def for_query(
        cls,
        query: str,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> "CompletionRequest":
        """Build a single-turn request asking ``query`` as the user."""

        return cls(
            model=model,
            messages=[ChatMessage(role="user", content=query)],
            stream=False,
            max_tokens=max_tokens,
            temperature=temperature,
        )


class CompletionChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class CompletionUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    """Response envelope returned by the chat completions endpoint."""

    id: str = ""
    object: str = ""
    created: int = Field(default=0, description="Unix timestamp of the completion")
    model: str = ""
    choices: List[CompletionChoice]
    usage: CompletionUsage = Field(default_factory=CompletionUsage)

    @field_validator("usage", mode="before")
    @classmethod
    def null_usage_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def answer_text(self) -> Optional[str]:
        """Return the first choice's content, or ``None`` when there is none."""

        if not self.choices:
            return None
        content = self.choices[0].message.content
        return content or None

    @property
    def is_usable(self) -> bool:
        return self.answer_text() is not None
