import pytest

from callassist.matcher import (
    KeywordChecklistMatcher,
    MatcherError,
    OpenAIChecklistMatcher,
    MatcherUnconfigured,
    parse_completed_items,
    validate_checklist,
)
from callassist.models import ChecklistItem


class EchoMatcher:
    def __init__(self, ids):
        self.ids = ids
        self.seen = None

    def match(self, transcript, items, call_id=""):
        self.seen = (transcript, list(items))
        return self.ids


def _items():
    return [
        ChecklistItem(id="1", text="Vouchers are live and ready on the app", completed=True),
        ChecklistItem(id="2", text="Emirates baggage: 30 kg checked and 7 kg cabin"),
        ChecklistItem(id="3", text="Contact hours are 10 AM to 7 PM"),
    ]


def test_validate_checklist_filters_completed_and_unknown():
    matcher = EchoMatcher(["1", "3", "42", "3"])
    assert validate_checklist(matcher, _items(), "some words") == ["3"]


def test_validate_checklist_passes_full_checklist():
    matcher = EchoMatcher([])
    validate_checklist(matcher, _items(), "full transcript")
    transcript, items = matcher.seen
    assert transcript == "full transcript"
    assert [i.id for i in items] == ["1", "2", "3"]


def test_validate_checklist_skips_when_nothing_pending():
    matcher = EchoMatcher(["1"])
    items = [ChecklistItem(id="1", text="done", completed=True)]
    assert validate_checklist(matcher, items, "anything") == []
    assert matcher.seen is None


def test_keyword_matcher_requires_numbers():
    matcher = KeywordChecklistMatcher()
    items = _items()
    spoken = "Your Emirates baggage allowance is 30 kg checked and 7 kg in the cabin"
    assert matcher.match(spoken, items) == ["2"]
    assert matcher.match("Emirates baggage is checked and cabin", items) == []


def test_keyword_matcher_ignores_completed_items():
    matcher = KeywordChecklistMatcher()
    spoken = "your vouchers are live and ready on the app"
    assert matcher.match(spoken, _items()) == []


def test_keyword_matcher_threshold_validation():
    with pytest.raises(ValueError):
        KeywordChecklistMatcher(threshold=0)


def test_parse_completed_items():
    assert parse_completed_items('{"completedItems": [1, "2"]}') == ["1", "2"]
    assert parse_completed_items("{}") == []
    with pytest.raises(MatcherError):
        parse_completed_items("not json")


def test_openai_matcher_requires_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MatcherUnconfigured):
        OpenAIChecklistMatcher().match("hello", _items())
