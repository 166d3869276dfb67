from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class ContentPart(BaseModel):
    """One typed part of a multi-part message.  Only ``text`` parts
    survive prompt flattening."""

    type: str
    text: str | None = None


class Message(BaseModel):
    role: MessageRole
    content: str | list[ContentPart]

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class TextResponseFormat(BaseModel):
    type: Literal["text"] = "text"


class JsonResponseFormat(BaseModel):
    type: Literal["json"] = "json"
    json_schema: dict | None = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}


ResponseFormat = TextResponseFormat | JsonResponseFormat


def coerce_response_format(value) -> ResponseFormat | None:
    """Accept a response-format model or its ``{"type": ...}`` dict form."""
    if value is None or isinstance(value, (TextResponseFormat, JsonResponseFormat)):
        return value
    if isinstance(value, dict):
        if value.get("type") == "json":
            return JsonResponseFormat(schema=value.get("schema"))
        return TextResponseFormat()
    raise TypeError(f"Unsupported response format: {value!r}")
