"""Conversation message model and its JSON wire format."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

PLACEHOLDER_TAG = "COMPACTION_PLACEHOLDER"

ROLES = ("system", "user", "assistant", "tool")


class MessageFormatError(ValueError):
    """Raised when a serialized message cannot be decoded."""


@dataclass(frozen=True)
class TextPart:
    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ReasoningPart:
    text: str
    type: str = field(default="reasoning", init=False)


@dataclass(frozen=True)
class MediaPart:
    """An image or file attachment. *data* is usually base64 encoded."""

    media_type: str
    data: str
    type: str = field(default="media", init=False)


@dataclass(frozen=True)
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool-call", init=False)


@dataclass(frozen=True)
class ToolResultPart:
    tool_call_id: str
    tool_name: str
    output: Any = None
    type: str = field(default="tool-result", init=False)


ContentPart = Union[TextPart, ReasoningPart, MediaPart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class Message:
    """A single entry in the conversation log."""

    role: str  # "system", "user", "assistant", "tool"
    content: tuple[ContentPart, ...] = ()
    tags: frozenset[str] = frozenset()
    sent_at: int | None = None  # epoch milliseconds
    pinned: bool = False
    keep_last_tags: frozenset[str] = frozenset()

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    @property
    def is_placeholder(self) -> bool:
        return PLACEHOLDER_TAG in self.tags

    @property
    def has_media(self) -> bool:
        return any(isinstance(p, MediaPart) for p in self.content)

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return tuple(p for p in self.content if isinstance(p, ToolCallPart))

    @property
    def tool_results(self) -> tuple[ToolResultPart, ...]:
        return tuple(p for p in self.content if isinstance(p, ToolResultPart))

    @property
    def tool_call_id(self) -> str | None:
        """Id of the call a ``tool`` message answers, if any."""
        if self.role != "tool":
            return None
        results = self.tool_results
        return results[0].tool_call_id if results else None

    @property
    def tool_name(self) -> str | None:
        results = self.tool_results
        return results[0].tool_name if results else None

    def text(self) -> str:
        """Concatenated text parts, one per line."""
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    def to_dict(self, *, include_content: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if include_content:
            data["content"] = [part_to_dict(p) for p in self.content]
        if self.tags:
            data["tags"] = sorted(self.tags)
        if self.sent_at is not None:
            data["sentAt"] = self.sent_at
        if self.pinned:
            data["pinned"] = True
        if self.keep_last_tags:
            data["keepLastTags"] = sorted(self.keep_last_tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        if not isinstance(data, dict):
            raise MessageFormatError(f"Message must be an object, got {type(data).__name__}")
        role = data.get("role")
        if role not in ROLES:
            raise MessageFormatError(f"Unknown message role: {role!r}")

        raw_content = data.get("content", [])
        if isinstance(raw_content, str):
            raw_content = [{"type": "text", "text": raw_content}]
        if not isinstance(raw_content, list):
            raise MessageFormatError("Message content must be a list or a string")

        sent_at = data.get("sentAt")
        if sent_at is not None and not isinstance(sent_at, (int, float)):
            raise MessageFormatError(f"sentAt must be a number, got {sent_at!r}")

        return cls(
            role=role,
            content=tuple(part_from_dict(p) for p in raw_content),
            tags=frozenset(data.get("tags") or ()),
            sent_at=int(sent_at) if sent_at is not None else None,
            pinned=bool(data.get("pinned", False)),
            keep_last_tags=frozenset(data.get("keepLastTags") or ()),
        )


def part_to_dict(part: ContentPart) -> dict[str, Any]:
    """Serialize a content part to its wire representation."""
    if isinstance(part, (TextPart, ReasoningPart)):
        return {"type": part.type, "text": part.text}
    if isinstance(part, MediaPart):
        return {"type": part.type, "mediaType": part.media_type, "data": part.data}
    if isinstance(part, ToolCallPart):
        return {
            "type": part.type,
            "toolCallId": part.tool_call_id,
            "toolName": part.tool_name,
            "input": part.input,
        }
    if isinstance(part, ToolResultPart):
        return {
            "type": part.type,
            "toolCallId": part.tool_call_id,
            "toolName": part.tool_name,
            "output": part.output,
        }
    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def part_from_dict(data: dict[str, Any]) -> ContentPart:
    if not isinstance(data, dict):
        raise MessageFormatError(f"Content part must be an object, got {type(data).__name__}")

    part_type = data.get("type")
    try:
        if part_type == "text":
            return TextPart(text=data["text"])
        if part_type == "reasoning":
            return ReasoningPart(text=data["text"])
        if part_type in ("media", "image", "file"):
            return MediaPart(
                media_type=data.get("mediaType", "application/octet-stream"),
                data=data.get("data") or data.get("image") or "",
            )
        if part_type == "tool-call":
            return ToolCallPart(
                tool_call_id=data["toolCallId"],
                tool_name=data["toolName"],
                input=data.get("input") or {},
            )
        if part_type == "tool-result":
            return ToolResultPart(
                tool_call_id=data["toolCallId"],
                tool_name=data["toolName"],
                output=data.get("output"),
            )
    except KeyError as e:
        raise MessageFormatError(f"Content part {part_type!r} is missing field {e}") from e

    raise MessageFormatError(f"Unknown content part type: {part_type!r}")


def messages_from_list(data: list[dict[str, Any]]) -> tuple[Message, ...]:
    """Decode a JSON array of messages."""
    if not isinstance(data, list):
        raise MessageFormatError("Message log must be a JSON array")
    return tuple(Message.from_dict(item) for item in data)


def messages_to_list(messages: tuple[Message, ...] | list[Message]) -> list[dict[str, Any]]:
    return [m.to_dict() for m in messages]
