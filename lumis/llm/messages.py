"""Wire models for the OpenAI-compatible chat-completion API."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Role(StrEnum):
    """Participant of a chat-completion conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class SendMessage(BaseModel):
    """A single outbound message. Immutable, never persisted."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        """Return the ``{"role": ..., "content": ...}`` wire form."""
        return {"role": self.role.value, "content": self.content}


class ChatCompletionRequest(BaseModel):
    """Typed request body; serialized once by :meth:`to_payload`."""

    model: str
    messages: list[SendMessage]
    stream: bool = False

    def to_payload(self) -> dict:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "stream": self.stream,
        }


# -- Response ------------------------------------------------------------------


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str | None = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Decoded response envelope. Unknown vendor fields are ignored."""

    id: str = ""
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None

    def first_content(self) -> str | None:
        """Text of the first choice, or None when the model returned nothing.

        Vendors send ``"content": null`` for empty or filtered answers.
        """
        if not self.choices:
            return None
        return self.choices[0].message.content
