"""Typed Computer Use commands issued by the reasoning model.

Every predefined browser function the model can call has exactly one model
class here. Coordinates are expressed on the model's normalized 0-1000 grid;
the executor converts them to viewport pixels.
"""
from __future__ import annotations

from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from exceptions import CommandValidationError, UnsupportedCommandError

Direction = Literal["up", "down", "left", "right"]

NORMALIZED_MAX = 1000


class Command(BaseModel):
    """Base class for all model-issued commands."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: ClassVar[str]

    def describe(self) -> str:
        """One-line rendering used in logs and iteration summaries."""
        args = ", ".join(f"{key}={value!r}" for key, value in self.model_dump().items())
        return f"{self.name}({args})"


class OpenWebBrowser(Command):
    name: ClassVar[str] = "open_web_browser"


class ClickAt(Command):
    name: ClassVar[str] = "click_at"

    x: float = Field(ge=0, le=NORMALIZED_MAX)
    y: float = Field(ge=0, le=NORMALIZED_MAX)


class HoverAt(Command):
    name: ClassVar[str] = "hover_at"

    x: float = Field(ge=0, le=NORMALIZED_MAX)
    y: float = Field(ge=0, le=NORMALIZED_MAX)


class TypeTextAt(Command):
    name: ClassVar[str] = "type_text_at"

    x: float = Field(ge=0, le=NORMALIZED_MAX)
    y: float = Field(ge=0, le=NORMALIZED_MAX)
    text: str
    press_enter: bool = False
    clear_before_typing: bool = True


class ScrollDocument(Command):
    name: ClassVar[str] = "scroll_document"

    direction: Direction


class ScrollAt(Command):
    name: ClassVar[str] = "scroll_at"

    x: float = Field(ge=0, le=NORMALIZED_MAX)
    y: float = Field(ge=0, le=NORMALIZED_MAX)
    direction: Direction
    magnitude: float = Field(default=800, ge=0)


class Wait5Seconds(Command):
    name: ClassVar[str] = "wait_5_seconds"


class GoBack(Command):
    name: ClassVar[str] = "go_back"


class GoForward(Command):
    name: ClassVar[str] = "go_forward"


class Search(Command):
    name: ClassVar[str] = "search"


class Navigate(Command):
    name: ClassVar[str] = "navigate"

    url: str = Field(min_length=1)


class KeyCombination(Command):
    name: ClassVar[str] = "key_combination"

    keys: str = Field(min_length=1)

    def key_list(self) -> list[str]:
        return [key.strip() for key in self.keys.split("+") if key.strip()]


class DragAndDrop(Command):
    name: ClassVar[str] = "drag_and_drop"

    x: float = Field(ge=0, le=NORMALIZED_MAX)
    y: float = Field(ge=0, le=NORMALIZED_MAX)
    destination_x: float = Field(ge=0, le=NORMALIZED_MAX)
    destination_y: float = Field(ge=0, le=NORMALIZED_MAX)


AnyCommand = Union[
    OpenWebBrowser,
    ClickAt,
    HoverAt,
    TypeTextAt,
    ScrollDocument,
    ScrollAt,
    Wait5Seconds,
    GoBack,
    GoForward,
    Search,
    Navigate,
    KeyCombination,
    DragAndDrop,
]

COMMAND_TYPES: dict[str, type[Command]] = {
    cls.name: cls
    for cls in (
        OpenWebBrowser,
        ClickAt,
        HoverAt,
        TypeTextAt,
        ScrollDocument,
        ScrollAt,
        Wait5Seconds,
        GoBack,
        GoForward,
        Search,
        Navigate,
        KeyCombination,
        DragAndDrop,
    )
}

# Names of the built-in Computer Use functions; their results carry a screenshot.
PREDEFINED_COMPUTER_USE_FUNCTIONS: frozenset[str] = frozenset(COMMAND_TYPES)


def parse_command(name: str, args: Optional[dict[str, Any]] = None) -> Command:
    """Build a typed command from a model function call."""
    command_cls = COMMAND_TYPES.get(name)
    if command_cls is None:
        raise UnsupportedCommandError(name)

    payload = dict(args or {})
    payload.pop("safety_decision", None)
    try:
        return command_cls.model_validate(payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or name}: {err['msg']}" for err in e.errors()
        )
        raise CommandValidationError(name, errors) from e
