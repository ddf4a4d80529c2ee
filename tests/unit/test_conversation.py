"""Unit tests for conversation history records and screenshot pruning."""
from __future__ import annotations

from google.genai import types

from conversation import (
    CommandRequestPart,
    CommandResultPart,
    ConversationEntry,
    EnvironmentState,
    TextPart,
    count_images,
    from_genai_content,
    prune_screenshots,
    result_from_state,
    to_genai_contents,
)


def screenshot_turn(index: int, name: str = "click_at") -> ConversationEntry:
    state = EnvironmentState(screenshot=f"png-{index}".encode(), url=f"https://example.com/{index}")
    return ConversationEntry.command_results([result_from_state(name, state)])


def model_turn(name: str = "click_at") -> ConversationEntry:
    return ConversationEntry(role="model", parts=(CommandRequestPart(name=name, args={"x": 1, "y": 1}),))


def build_history(turns: int) -> list[ConversationEntry]:
    history = [ConversationEntry.user_text("find the docs")]
    for index in range(turns):
        history.append(model_turn())
        history.append(screenshot_turn(index))
    return history


class TestConversationEntry:
    def test_text_joins_text_parts(self):
        entry = ConversationEntry(
            role="model",
            parts=(TextPart("I will"), CommandRequestPart("click_at", {}), TextPart("click.")),
        )
        assert entry.text == "I will click."
        assert [c.name for c in entry.command_requests] == ["click_at"]

    def test_text_is_none_without_text_parts(self):
        assert model_turn().text is None

    def test_result_from_state_merges_extra_fields(self):
        state = EnvironmentState(screenshot=b"png", url="https://example.com")
        part = result_from_state("navigate", state, {"safety_acknowledgement": "true"})
        assert part.response == {"url": "https://example.com", "safety_acknowledgement": "true"}
        assert part.image == b"png"
        assert part.is_predefined

    def test_custom_function_is_not_predefined(self):
        assert not CommandResultPart(name="lookup_order", response={"status": "ok"}).is_predefined


class TestPruneScreenshots:
    def test_keeps_only_most_recent_turns(self):
        history = build_history(6)
        pruned = prune_screenshots(history, max_recent_turns=3)

        assert count_images(pruned) == 3
        image_turns = [i for i, e in enumerate(pruned) if count_images([e])]
        assert image_turns == [8, 10, 12]

    def test_metadata_survives_pruning(self):
        history = build_history(5)
        pruned = prune_screenshots(history, max_recent_turns=2)

        for original, kept in zip(history, pruned):
            assert original.role == kept.role
            for before, after in zip(original.parts, kept.parts):
                if isinstance(before, CommandResultPart):
                    assert after.name == before.name
                    assert after.response == before.response

    def test_does_not_mutate_input(self):
        history = build_history(5)
        prune_screenshots(history, max_recent_turns=1)
        assert count_images(history) == 5

    def test_pruning_is_stable_when_repeated(self):
        history = build_history(4)
        once = prune_screenshots(history, max_recent_turns=3)
        twice = prune_screenshots(once + [model_turn(), screenshot_turn(99)], max_recent_turns=3)
        assert count_images(twice) == 3
        assert twice[-1].parts[0].image == b"png-99"

    def test_error_turns_do_not_push_out_screenshots(self):
        history = build_history(3)
        for _ in range(3):
            history.append(model_turn("go_back"))
            history.append(
                ConversationEntry.command_results([CommandResultPart(name="go_back", response={"error": "timeout"})])
            )
        history.extend([model_turn(), screenshot_turn(3)])

        pruned = prune_screenshots(history, max_recent_turns=3)

        assert count_images(pruned) == 3
        assert [p.image for e in pruned for p in e.parts if getattr(p, "image", None)] == [b"png-1", b"png-2", b"png-3"]

    def test_stripped_turns_still_count(self):
        once = prune_screenshots(build_history(4), max_recent_turns=2)
        stripped = once[2].parts[0]
        assert stripped.image is None
        assert stripped.had_image
        assert once[2].has_screenshot_result

    def test_custom_function_results_keep_payload(self):
        custom = ConversationEntry.command_results(
            [CommandResultPart(name="lookup_order", response={"status": "ok"}, image=b"chart")]
        )
        history = [custom] + build_history(3)[1:]
        pruned = prune_screenshots(history, max_recent_turns=1)
        assert pruned[0].parts[0].image == b"chart"


class TestGenaiConversion:
    def test_round_trip_of_model_reply(self):
        content = types.Content(
            role="model",
            parts=[
                types.Part(text="Opening the page"),
                types.Part(function_call=types.FunctionCall(name="navigate", args={"url": "https://a.b"})),
            ],
        )
        entry = from_genai_content(content)
        assert entry.role == "model"
        assert entry.text == "Opening the page"
        assert entry.command_requests[0].args == {"url": "https://a.b"}

        (converted,) = to_genai_contents([entry])
        assert converted.role == "model"
        assert converted.parts[1].function_call.name == "navigate"

    def test_function_response_carries_screenshot(self):
        (content,) = to_genai_contents([screenshot_turn(1)])
        response = content.parts[0].function_response
        assert response.name == "click_at"
        assert response.response == {"url": "https://example.com/1"}
        assert response.parts[0].inline_data.mime_type == "image/png"
        assert response.parts[0].inline_data.data == b"png-1"

    def test_pruned_function_response_has_no_image(self):
        entry = screenshot_turn(1).without_images()
        (content,) = to_genai_contents([entry])
        assert not content.parts[0].function_response.parts
