from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from src.api.reminder_lifecycle import (
    AuditEntry,
    Reminder,
    ReminderPolicy,
    compute_confirm_transition,
    compute_snooze_transition,
    is_terminal_status,
    utc_now,
)
from src.api.reminder_store import JsonReminderStore
from src.voice_reminder.intent_classifier import InputClassification, classify_gather_input

logger = logging.getLogger(__name__)


GatherReply = Literal["could_not_process", "confirmed", "snoozed", "reprompt"]


@dataclass(frozen=True)
class GatherResult:
    reply: GatherReply
    classification: Optional[InputClassification] = None
    reminder: Optional[Reminder] = None


class ResponseProcessor:
    """Applies spoken or keyed user answers gathered during a reminder call."""

    def __init__(self, store: JsonReminderStore, *, policy: Optional[ReminderPolicy] = None) -> None:
        self.store = store
        self.policy = policy or ReminderPolicy()

    def process(
        self,
        *,
        reminder_id: Optional[str],
        user_input: Optional[str],
        call_sid: Optional[str],
        now_utc: Optional[datetime] = None,
    ) -> GatherResult:
        now = now_utc or utc_now()
        text = (user_input or "").strip()
        if not reminder_id or not text:
            return GatherResult(reply="could_not_process")

        classification = classify_gather_input(text)
        logged_intent = None if classification.intent == "unknown" else classification.logged_intent
        try:
            self.store.append_call_log(
                reminder_id,
                AuditEntry(
                    outcome="gather_received",
                    call_sid=call_sid or None,
                    transcript=classification.raw_input,
                    intent=logged_intent,
                ),
                now_utc=now,
            )
        except FileNotFoundError:
            logger.warning(f"Gather input for unknown reminder {reminder_id}")
            return GatherResult(reply="could_not_process", classification=classification)

        if classification.intent == "unknown":
            return GatherResult(reply="reprompt", classification=classification)

        if classification.intent == "confirm":
            updated = self._confirm(reminder_id, call_sid=call_sid, now_utc=now)
            return GatherResult(reply="confirmed", classification=classification, reminder=updated)

        updated = self._snooze(reminder_id, call_sid=call_sid, now_utc=now)
        return GatherResult(reply="snoozed", classification=classification, reminder=updated)

    def _confirm(self, reminder_id: str, *, call_sid: Optional[str], now_utc: datetime) -> Optional[Reminder]:
        def mutate(current: Reminder) -> List[AuditEntry]:
            compute_confirm_transition(current).apply_to(current)
            return [
                AuditEntry(
                    outcome="completed",
                    call_sid=call_sid or None,
                    transcript="User confirmed reminder",
                    intent="confirmed",
                )
            ]

        updated = self.store.conditional_update(
            reminder_id,
            precondition=lambda r: not is_terminal_status(r.status),
            mutate=mutate,
            now_utc=now_utc,
        )
        if updated is None:
            logger.info(f"Confirm for reminder {reminder_id} ignored; already DONE")
        return updated

    def _snooze(self, reminder_id: str, *, call_sid: Optional[str], now_utc: datetime) -> Optional[Reminder]:
        def mutate(current: Reminder) -> List[AuditEntry]:
            transition = compute_snooze_transition(policy=self.policy, now_utc=now_utc)
            transition.apply_to(current)
            return [
                AuditEntry(
                    outcome="snoozed",
                    call_sid=call_sid or None,
                    transcript=f"Reminder snoozed until {current.next_attempt_at_utc}",
                    intent="snoozed",
                )
            ]

        updated = self.store.conditional_update(
            reminder_id,
            precondition=lambda r: not is_terminal_status(r.status),
            mutate=mutate,
            now_utc=now_utc,
        )
        if updated is None:
            logger.info(f"Snooze for reminder {reminder_id} ignored; already DONE")
        return updated
