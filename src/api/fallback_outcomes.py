from __future__ import annotations

import random
from typing import Iterable, List, Protocol

from src.api.settings import Settings
from src.voice_reminder.outcome_classifier import OutcomeClass


class OutcomeSource(Protocol):
    """Supplies a locally synthesized call outcome when the gateway is unreachable."""

    def draw(self) -> OutcomeClass: ...


class AlwaysFailOutcomeSource:
    """Production default: an unplaced call counts as a failed attempt."""

    def draw(self) -> OutcomeClass:
        return OutcomeClass.RETRYABLE_FAILURE


class SeededOutcomeSource:
    def __init__(self, *, seed: int = 0, success_rate: float = 0.7) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be within [0, 1], got {success_rate}")
        self._rng = random.Random(seed)
        self.success_rate = success_rate

    def draw(self) -> OutcomeClass:
        if self._rng.random() < self.success_rate:
            return OutcomeClass.SUCCESS
        return OutcomeClass.RETRYABLE_FAILURE


class FixedOutcomeSource:
    """Replays a fixed sequence of outcomes, repeating the last one."""

    def __init__(self, outcomes: Iterable[OutcomeClass]) -> None:
        self._outcomes: List[OutcomeClass] = list(outcomes)
        if not self._outcomes:
            raise ValueError("FixedOutcomeSource needs at least one outcome.")
        self._index = 0

    def draw(self) -> OutcomeClass:
        outcome = self._outcomes[min(self._index, len(self._outcomes) - 1)]
        self._index += 1
        return outcome


def build_outcome_source(settings: Settings) -> OutcomeSource:
    if settings.fallback_outcome_mode == "seeded":
        return SeededOutcomeSource(seed=settings.fallback_seed, success_rate=settings.fallback_success_rate)
    return AlwaysFailOutcomeSource()
