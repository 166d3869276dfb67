"""Flattening of a structured conversation into one Goose prompt.

Goose takes a single text message per turn, so the caller's history is
rendered as plain text: system messages first (``System: ...``), then
user and assistant turns in their original order, separated by blank
lines.  Anything that cannot be rendered is skipped rather than
rejected.
"""

from collections.abc import Sequence

from goose_web.message import Message

Prompt = str | Sequence[Message | dict] | None

_CONVERSATION_ROLES = ("user", "assistant")


def _role_of(message) -> str | None:
    if isinstance(message, Message):
        return message.role.value
    if isinstance(message, dict):
        role = message.get("role")
        return getattr(role, "value", role)
    return None


def _content_of(message):
    if isinstance(message, Message):
        return message.content
    return message.get("content")


def _part_text(part) -> str | None:
    if isinstance(part, dict):
        kind, text = part.get("type"), part.get("text")
    else:
        kind, text = getattr(part, "type", None), getattr(part, "text", None)
    if kind != "text" or not isinstance(text, str):
        return None
    return text


def render_content(content) -> str:
    """Render message content; multi-part content keeps only text parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        texts = [_part_text(part) for part in content if part]
        return " ".join(t for t in texts if t)
    return ""


def flatten_prompt(prompt: Prompt) -> str:
    if prompt is None:
        return ""
    if isinstance(prompt, str):
        return prompt

    system: list[str] = []
    conversation: list[str] = []
    for message in prompt:
        role = _role_of(message)
        if role is None:
            continue
        text = render_content(_content_of(message))
        if not text:
            continue
        if role == "system":
            system.append(f"System: {text}")
        elif role in _CONVERSATION_ROLES:
            conversation.append(text)

    return "\n\n".join(system + conversation)
