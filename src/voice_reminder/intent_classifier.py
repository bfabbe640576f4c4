from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Tuple


GatherIntent = Literal["confirm", "snooze", "unknown"]


@dataclass(frozen=True)
class InputClassification:
    intent: GatherIntent
    raw_input: str
    matched_keyword: str = ""

    @property
    def logged_intent(self) -> str:
        """Intent value written on CallLog rows (confirmed / snoozed / unknown)."""
        return _LOGGED_INTENTS[self.intent]

    def to_dict(self) -> Dict[str, str]:
        return {
            "intent": self.intent,
            "raw_input": self.raw_input,
            "matched_keyword": self.matched_keyword,
        }


_LOGGED_INTENTS: Dict[str, str] = {
    "confirm": "confirmed",
    "snooze": "snoozed",
    "unknown": "unknown",
}


# Order matters: confirm is checked before snooze, so "yes, later" confirms.
_RULES: List[Tuple[GatherIntent, str, Tuple[str, ...]]] = [
    ("confirm", "1", ("confirm", "yes", "acknowledge")),
    ("snooze", "2", ("snooze", "later", "hour")),
]


def classify_gather_input(text: str) -> InputClassification:
    raw = text or ""
    normalized = raw.strip().lower()
    if not normalized:
        return InputClassification(intent="unknown", raw_input=raw)

    for intent, digit, keywords in _RULES:
        if normalized == digit:
            return InputClassification(intent=intent, raw_input=raw, matched_keyword=digit)
        for keyword in keywords:
            if keyword in normalized:
                return InputClassification(intent=intent, raw_input=raw, matched_keyword=keyword)

    return InputClassification(intent="unknown", raw_input=raw)
