"""Unit tests for commands module."""
from __future__ import annotations

import pytest

from commands import (
    COMMAND_TYPES,
    PREDEFINED_COMPUTER_USE_FUNCTIONS,
    ClickAt,
    KeyCombination,
    Navigate,
    ScrollAt,
    TypeTextAt,
    Wait5Seconds,
    parse_command,
)
from exceptions import CommandValidationError, UnsupportedCommandError


class TestParseCommand:
    """Tests for parse_command."""

    def test_click_at(self):
        command = parse_command("click_at", {"x": 500, "y": 250})
        assert isinstance(command, ClickAt)
        assert (command.x, command.y) == (500, 250)

    def test_type_text_defaults(self):
        command = parse_command("type_text_at", {"x": 1, "y": 2, "text": "hello"})
        assert isinstance(command, TypeTextAt)
        assert command.press_enter is False
        assert command.clear_before_typing is True

    def test_scroll_at_default_magnitude(self):
        command = parse_command("scroll_at", {"x": 10, "y": 10, "direction": "down"})
        assert isinstance(command, ScrollAt)
        assert command.magnitude == 800

    def test_no_argument_command(self):
        assert isinstance(parse_command("wait_5_seconds"), Wait5Seconds)

    def test_safety_decision_is_not_an_argument(self):
        command = parse_command(
            "navigate",
            {"url": "https://example.com", "safety_decision": {"decision": "require_confirmation"}},
        )
        assert isinstance(command, Navigate)
        assert command.url == "https://example.com"

    def test_unknown_command(self):
        with pytest.raises(UnsupportedCommandError) as exc_info:
            parse_command("teleport", {})
        assert exc_info.value.name == "teleport"

    def test_missing_argument(self):
        with pytest.raises(CommandValidationError):
            parse_command("click_at", {"x": 5})

    def test_out_of_range_coordinate(self):
        with pytest.raises(CommandValidationError):
            parse_command("click_at", {"x": 1200, "y": 5})

    def test_invalid_direction(self):
        with pytest.raises(CommandValidationError):
            parse_command("scroll_document", {"direction": "sideways"})


class TestCommands:
    def test_key_list_splits_on_plus(self):
        assert KeyCombination(keys="Control+Shift+t").key_list() == ["Control", "Shift", "t"]

    def test_commands_are_immutable(self):
        command = ClickAt(x=1, y=2)
        with pytest.raises(Exception):
            command.x = 3

    def test_describe(self):
        assert ClickAt(x=1, y=2).describe() == "click_at(x=1.0, y=2.0)"

    def test_registry_is_closed_set(self):
        assert set(COMMAND_TYPES) == PREDEFINED_COMPUTER_USE_FUNCTIONS
        assert "drag_and_drop" in COMMAND_TYPES
        assert len(COMMAND_TYPES) == 13
