from __future__ import annotations

from types import SimpleNamespace

import pytest

from bookgen.llm.extraction import RawResponse, extract_reply, strip_reasoning


class _ResponseWithAccessor:
    def __init__(self, text: str) -> None:
        self.response = SimpleNamespace(text=lambda: text)


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("  plain reply  ", "plain reply"),
        (_ResponseWithAccessor("accessor reply"), "accessor reply"),
        ({"candidates": [{"content": {"parts": [{"text": "candidate reply"}]}}]}, "candidate reply"),
        ({"output": [{"content": "first"}, {"text": "second"}]}, "first\nsecond"),
        ({"choices": [{"message": {"content": "chat reply"}}]}, "chat reply"),
        (SimpleNamespace(content="message reply"), "message reply"),
        (SimpleNamespace(content=[{"type": "text", "text": "part "}, "two"]), "part two"),
        ({"text": "text field"}, "text field"),
        (SimpleNamespace(text=lambda: "callable text"), "callable text"),
    ],
)
def test_extract_reply_understands_known_shapes(payload, expected) -> None:
    assert extract_reply(payload) == expected


@pytest.mark.parametrize(
    "payload",
    [None, "", "   ", {}, {"choices": []}, {"candidates": [{"content": {"parts": []}}]}, 42],
)
def test_unrecognised_or_blank_payloads_yield_empty_reply(payload) -> None:
    assert extract_reply(payload) == ""


def test_blank_strategy_result_falls_through_to_later_strategy() -> None:
    payload = {"output": [], "choices": [{"message": {"content": "from choices"}}]}

    assert extract_reply(payload) == "from choices"


def test_lookup_stops_on_missing_step() -> None:
    view = RawResponse({"choices": [{"message": None}]})

    assert view.lookup("choices", 0, "message", "content") is None
    assert view.lookup("choices", 3) is None
    assert view.lookup("choices", 0) == {"message": None}


def test_strip_reasoning_removes_think_blocks() -> None:
    text = "<think>planning the answer\nstep two</think>\n\nFinal answer."

    assert strip_reasoning(text) == "Final answer."
