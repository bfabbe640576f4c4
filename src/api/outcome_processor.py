from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from src.api.reminder_lifecycle import (
    AuditEntry,
    CallRole,
    Reminder,
    ReminderPolicy,
    ReminderStatus,
    compute_transition,
    is_terminal_status,
    role_for_status,
    utc_now,
)
from src.api.reminder_store import JsonReminderStore
from src.voice_reminder.outcome_classifier import OutcomeClass, classify_call_status

logger = logging.getLogger(__name__)

GATHER_INTENTS = ("confirmed", "snoozed")


@dataclass(frozen=True)
class StatusCallbackResult:
    # Always True: the provider gets a benign acknowledgment no matter what.
    acknowledged: bool
    action: str
    status: Optional[ReminderStatus] = None


class OutcomeProcessor:
    """Applies provider call-status callbacks to reminders."""

    def __init__(self, store: JsonReminderStore, *, policy: Optional[ReminderPolicy] = None) -> None:
        self.store = store
        self.policy = policy or ReminderPolicy()

    def process(
        self,
        *,
        reminder_id: Optional[str],
        call_status: Optional[str],
        call_sid: Optional[str],
        duration: Optional[str] = None,
        now_utc: Optional[datetime] = None,
    ) -> StatusCallbackResult:
        try:
            return self._process(
                reminder_id=reminder_id,
                call_status=call_status,
                call_sid=call_sid,
                duration=duration,
                now_utc=now_utc or utc_now(),
            )
        except Exception as exc:
            logger.exception(f"Error in call-status processing for reminder {reminder_id}: {exc}")
            return StatusCallbackResult(acknowledged=True, action="error")

    def _process(
        self,
        *,
        reminder_id: Optional[str],
        call_status: Optional[str],
        call_sid: Optional[str],
        duration: Optional[str],
        now_utc: datetime,
    ) -> StatusCallbackResult:
        if not reminder_id or not call_status or not call_sid:
            logger.warning(
                f"Ignoring malformed call-status payload reminder={reminder_id} status={call_status} sid={call_sid}"
            )
            return StatusCallbackResult(acknowledged=True, action="malformed")

        classification = classify_call_status(call_status)
        try:
            self.store.append_call_log(
                reminder_id,
                AuditEntry(
                    outcome=f"status_{classification.label}",
                    call_sid=call_sid,
                    transcript=f"Call duration: {duration or '0'} seconds",
                ),
                now_utc=now_utc,
            )
        except FileNotFoundError:
            logger.warning(f"Call-status '{call_status}' for unknown reminder {reminder_id}")
            return StatusCallbackResult(acknowledged=True, action="unknown_reminder")

        if classification.is_intermediate:
            logger.info(f"Received intermediate status '{call_status}' for reminder {reminder_id}")
            return StatusCallbackResult(acknowledged=True, action="intermediate")

        reminder = self.store.get_reminder(reminder_id)
        if is_terminal_status(reminder.status):
            return StatusCallbackResult(acknowledged=True, action="already_done", status=reminder.status)
        if reminder.status != ReminderStatus.CALLING:
            # No attempt in flight: a late or duplicate delivery for an attempt already resolved.
            logger.info(
                f"Call-status '{call_status}' for reminder {reminder_id} in {reminder.status.value}; no attempt in flight"
            )
            return StatusCallbackResult(acknowledged=True, action="stale", status=reminder.status)

        outcome_class = classification.outcome_class
        extra_entries: List[AuditEntry] = []
        if classification.is_success and classification.label == "completed":
            intent = self.store.find_call_intent(reminder_id, call_sid=call_sid, intents=GATHER_INTENTS)
            if intent is not None:
                # The gather callback already applied the user's choice.
                return StatusCallbackResult(acknowledged=True, action=f"handled_by_gather_{intent}", status=reminder.status)
            logger.info(f"Call completed without confirmation for reminder {reminder_id}, treating as no-answer")
            outcome_class = OutcomeClass.RETRYABLE_FAILURE
            extra_entries.append(
                AuditEntry(
                    outcome="completed_no_confirmation",
                    call_sid=call_sid,
                    transcript="Call completed without explicit confirmation - treating as no-answer",
                )
            )

        role = reminder.call_role or role_for_status(reminder.status)
        updated = self._apply_outcome(
            reminder,
            role=role,
            outcome_class=outcome_class,
            outcome_label=classification.label,
            call_sid=call_sid,
            extra_entries=extra_entries,
            now_utc=now_utc,
        )
        if updated is None:
            return StatusCallbackResult(acknowledged=True, action="conflict")
        logger.info(f"Reminder {reminder_id} -> {updated.status.value}: {updated.last_outcome}")
        return StatusCallbackResult(acknowledged=True, action="transitioned", status=updated.status)

    def _apply_outcome(
        self,
        reminder: Reminder,
        *,
        role: CallRole,
        outcome_class: OutcomeClass,
        outcome_label: str,
        call_sid: str,
        extra_entries: List[AuditEntry],
        now_utc: datetime,
    ) -> Optional[Reminder]:
        def mutate(current: Reminder) -> List[AuditEntry]:
            transition = compute_transition(
                role=role,
                outcome_class=outcome_class,
                attempts=current.attempts,
                backup_attempts=current.backup_attempts,
                has_backup_phone=bool(current.backup_phone),
                policy=self.policy,
                now_utc=now_utc,
                outcome_label=outcome_label,
            )
            transition.apply_to(current)
            return extra_entries + [
                AuditEntry(outcome=transition.audit_outcome, call_sid=call_sid, transcript=transition.last_outcome)
            ]

        return self.store.conditional_update(
            reminder.id,
            precondition=lambda r: r.status == ReminderStatus.CALLING and r.call_role == reminder.call_role,
            mutate=mutate,
            now_utc=now_utc,
        )
