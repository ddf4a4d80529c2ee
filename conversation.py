"""Conversation history records exchanged with the reasoning model."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, Optional, Sequence, Union

from google.genai import types

from commands import PREDEFINED_COMPUTER_USE_FUNCTIONS

Role = Literal["user", "model"]

SCREENSHOT_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class EnvironmentState:
    """What the browser looks like after an action."""

    screenshot: bytes
    url: str


@dataclass(frozen=True)
class TextPart:
    text: str
    thought_signature: Optional[bytes] = None


@dataclass(frozen=True)
class CommandRequestPart:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    thought_signature: Optional[bytes] = None


@dataclass(frozen=True)
class CommandResultPart:
    """Outcome of one command; ``image`` is dropped once the turn gets old.

    ``had_image`` stays set after pruning so old turns still count as
    screenshot turns.
    """

    name: str
    response: dict[str, Any] = field(default_factory=dict)
    image: Optional[bytes] = None
    had_image: bool = False

    @property
    def is_predefined(self) -> bool:
        return self.name in PREDEFINED_COMPUTER_USE_FUNCTIONS


Part = Union[TextPart, CommandRequestPart, CommandResultPart]


@dataclass(frozen=True)
class ConversationEntry:
    """One turn of the dialogue with the reasoning model."""

    role: Role
    parts: tuple[Part, ...]

    @classmethod
    def user_text(cls, text: str) -> "ConversationEntry":
        return cls(role="user", parts=(TextPart(text=text),))

    @classmethod
    def command_results(cls, results: Iterable[CommandResultPart]) -> "ConversationEntry":
        return cls(role="user", parts=tuple(results))

    @property
    def text(self) -> Optional[str]:
        texts = [p.text for p in self.parts if isinstance(p, TextPart) and p.text]
        return " ".join(texts) if texts else None

    @property
    def command_requests(self) -> list[CommandRequestPart]:
        return [p for p in self.parts if isinstance(p, CommandRequestPart)]

    @property
    def has_screenshot_result(self) -> bool:
        return any(
            isinstance(p, CommandResultPart) and p.is_predefined and (p.had_image or p.image is not None)
            for p in self.parts
        )

    def without_images(self) -> "ConversationEntry":
        """Copy of this entry with predefined-command screenshots stripped."""
        parts = tuple(
            replace(p, image=None) if isinstance(p, CommandResultPart) and p.is_predefined and p.image else p
            for p in self.parts
        )
        return replace(self, parts=parts)


def result_from_state(
    name: str,
    state: EnvironmentState,
    extra_fields: Optional[dict[str, Any]] = None,
) -> CommandResultPart:
    return CommandResultPart(
        name=name,
        response={"url": state.url, **(extra_fields or {})},
        image=state.screenshot,
        had_image=True,
    )


def prune_screenshots(
    history: Sequence[ConversationEntry],
    max_recent_turns: int,
) -> list[ConversationEntry]:
    """Keep screenshots only in the ``max_recent_turns`` newest turns that have one.

    Turns are counted from the end; a turn counts when a predefined command
    result in it was captured with a screenshot, whether or not the image is
    still present. Turns holding only error results are not counted.
    """
    pruned = list(history)
    turns_found = 0
    for index in range(len(pruned) - 1, -1, -1):
        entry = pruned[index]
        if entry.role != "user" or not entry.has_screenshot_result:
            continue
        turns_found += 1
        if turns_found > max_recent_turns:
            pruned[index] = entry.without_images()
    return pruned


def count_images(history: Sequence[ConversationEntry]) -> int:
    return sum(
        1
        for entry in history
        for part in entry.parts
        if isinstance(part, CommandResultPart) and part.image is not None
    )


# ─────────────────────────────────────────────────────────────────────────
# Gemini wire conversion
# ─────────────────────────────────────────────────────────────────────────


def _part_to_genai(part: Part) -> types.Part:
    if isinstance(part, TextPart):
        return types.Part(text=part.text, thought_signature=part.thought_signature)
    if isinstance(part, CommandRequestPart):
        return types.Part(
            function_call=types.FunctionCall(name=part.name, args=dict(part.args)),
            thought_signature=part.thought_signature,
        )
    image_parts = None
    if part.image is not None:
        image_parts = [
            types.FunctionResponsePart(
                inline_data=types.FunctionResponseBlob(mime_type=SCREENSHOT_MIME_TYPE, data=part.image)
            )
        ]
    return types.Part(
        function_response=types.FunctionResponse(
            name=part.name,
            response=dict(part.response),
            parts=image_parts,
        )
    )


def to_genai_contents(history: Sequence[ConversationEntry]) -> list[types.Content]:
    return [
        types.Content(role=entry.role, parts=[_part_to_genai(p) for p in entry.parts])
        for entry in history
    ]


def from_genai_content(content: types.Content) -> ConversationEntry:
    """Convert a candidate's content into a model entry."""
    parts: list[Part] = []
    for part in content.parts or []:
        signature = getattr(part, "thought_signature", None)
        if part.function_call is not None:
            parts.append(
                CommandRequestPart(
                    name=part.function_call.name or "",
                    args=dict(part.function_call.args or {}),
                    thought_signature=signature,
                )
            )
        elif part.text:
            parts.append(TextPart(text=part.text, thought_signature=signature))
    return ConversationEntry(role="model", parts=tuple(parts))
