"""Checklist matching against the transcript-to-date."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Iterable, List, Optional, Protocol, Sequence

from openai import OpenAIError, OpenAI

from .models import ChecklistItem

logger = logging.getLogger("callassist")


class MatcherError(Exception):
    pass


class MatcherUnconfigured(MatcherError):
    pass


class ChecklistMatcher(Protocol):
    def match(
        self, transcript: str, items: Sequence[ChecklistItem], call_id: str = ""
    ) -> Iterable[str]:
        ...


def validate_checklist(
    matcher: ChecklistMatcher,
    items: Sequence[ChecklistItem],
    transcript: str,
    call_id: str = "",
) -> List[str]:
    """Ask ``matcher`` which pending items the full transcript satisfies.

    The matcher always sees the whole transcript and the whole checklist.
    Returned ids are restricted to pending items of this checklist, in
    checklist order, without duplicates.
    """
    pending = [item for item in items if not item.completed]
    if not pending or not transcript.strip():
        return []
    returned = {str(item_id) for item_id in matcher.match(transcript, list(items), call_id)}
    return [item.id for item in pending if item.id in returned]


_STOPWORDS = frozenset(
    """
    a an and are as at be before by can for from has have if in into is it its
    not of on or our per the their them there this to unless usually was will
    with you your all any one
    """.split()
)
_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _tokens(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower())


def _stem(token: str) -> str:
    for suffix in ("ing", "ed", "es", "s"):
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            return token[: -len(suffix)]
    return token


class KeywordChecklistMatcher:
    """Offline heuristic matcher.

    An item counts as conveyed when every number in it was spoken and at
    least ``threshold`` of its remaining significant words appear in the
    transcript.
    """

    def __init__(self, threshold: float = 0.6) -> None:
        if not 0.0 < threshold <= 1.0:
            raise ValueError("threshold must be in (0, 1].")
        self.threshold = threshold

    def _is_conveyed(self, item_text: str, spoken: set) -> bool:
        tokens = [tok for tok in _tokens(item_text) if tok not in _STOPWORDS]
        numbers = {tok for tok in tokens if tok.isdigit() and tok != "00"}
        words = {_stem(tok) for tok in tokens if not tok.isdigit() and len(tok) > 2}
        if not numbers and not words:
            return False
        if not numbers <= spoken:
            return False
        if not words:
            return True
        hits = sum(1 for word in words if word in spoken)
        return hits / len(words) >= self.threshold

    def match(
        self, transcript: str, items: Sequence[ChecklistItem], call_id: str = ""
    ) -> List[str]:
        spoken = set()
        for tok in _tokens(transcript):
            spoken.add(tok)
            spoken.add(_stem(tok))
        return [
            item.id
            for item in items
            if not item.completed and self._is_conveyed(item.text, spoken)
        ]


MATCH_PROMPT = """You are auditing a live customer call for mandatory disclosures.

Below is a list of checklist items the agent must convey, followed by the
transcript so far. An item is conveyed only if the agent communicated its
substance, including any specific numbers, times, or amounts. Paraphrasing is
fine; partial or vague mentions are not.

Checklist items (JSON):
{items}

Transcript:
\"\"\"{transcript}\"\"\"

Respond with JSON only: {{"completedItems": ["<id>", ...]}} listing the ids of
conveyed items. Use an empty list if none were conveyed.
"""


class OpenAIChecklistMatcher:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 30.0,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if not self.api_key:
            raise MatcherUnconfigured("OpenAI API key not configured")
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client

    def match(
        self, transcript: str, items: Sequence[ChecklistItem], call_id: str = ""
    ) -> List[str]:
        pending = [{"id": item.id, "text": item.text} for item in items if not item.completed]
        if not pending:
            return []
        client = self._get_client()
        prompt = MATCH_PROMPT.format(items=json.dumps(pending, indent=2), transcript=transcript)
        try:
            resp = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except OpenAIError as exc:
            raise MatcherError(f"Checklist validation failed: {exc}") from exc
        content = resp.choices[0].message.content or "{}"
        return parse_completed_items(content)


def parse_completed_items(content: str) -> List[str]:
    try:
        data = json.loads(content)
    except ValueError as exc:
        raise MatcherError(f"Matcher returned invalid JSON: {content[:200]}") from exc
    ids = data.get("completedItems", []) if isinstance(data, dict) else []
    if not isinstance(ids, list):
        raise MatcherError("completedItems must be a list")
    return [str(item_id) for item_id in ids]
