from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class OutcomeClass(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    NON_RETRYABLE_FAILURE = "non_retryable_failure"
    IGNORE = "ignore"


@dataclass(frozen=True)
class OutcomeClassification:
    outcome_class: OutcomeClass
    is_intermediate: bool
    # Normalized label used in audit tags, e.g. "no_answer".
    label: str
    raw_status: str

    @property
    def should_retry(self) -> bool:
        return self.outcome_class == OutcomeClass.RETRYABLE_FAILURE

    @property
    def is_success(self) -> bool:
        return self.outcome_class == OutcomeClass.SUCCESS


_STATUS_TABLE: Dict[str, Tuple[OutcomeClass, str]] = {
    "completed": (OutcomeClass.SUCCESS, "completed"),
    "answered": (OutcomeClass.SUCCESS, "answered"),
    "no-answer": (OutcomeClass.RETRYABLE_FAILURE, "no_answer"),
    "busy": (OutcomeClass.RETRYABLE_FAILURE, "busy"),
    "failed": (OutcomeClass.RETRYABLE_FAILURE, "failed"),
    "canceled": (OutcomeClass.NON_RETRYABLE_FAILURE, "canceled"),
    "initiated": (OutcomeClass.IGNORE, "initiated"),
    "queued": (OutcomeClass.IGNORE, "queued"),
    "ringing": (OutcomeClass.IGNORE, "ringing"),
    "in-progress": (OutcomeClass.IGNORE, "in-progress"),
}


def classify_call_status(status: str) -> OutcomeClassification:
    raw = status or ""
    normalized = raw.strip().lower()
    outcome_class, label = _STATUS_TABLE.get(
        normalized,
        # Unknown provider signals never trigger a retry.
        (OutcomeClass.NON_RETRYABLE_FAILURE, normalized or "unknown"),
    )
    return OutcomeClassification(
        outcome_class=outcome_class,
        is_intermediate=outcome_class == OutcomeClass.IGNORE,
        label=label,
        raw_status=raw,
    )
