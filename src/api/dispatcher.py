from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.api.fallback_outcomes import AlwaysFailOutcomeSource, OutcomeSource
from src.api.reminder_lifecycle import (
    AuditEntry,
    CallRole,
    Reminder,
    ReminderPolicy,
    ReminderStatus,
    Transition,
    compute_transition,
    ensure_transition,
    role_for_status,
    utc_now,
)
from src.api.reminder_store import JsonReminderStore
from src.api.voice_gateway import CallResult, VoiceGateway
from src.voice_reminder.outcome_classifier import OutcomeClass

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    processed: int = 0
    successfully_called: int = 0
    scheduled_for_retry: int = 0
    escalated_to_backup: int = 0
    marked_as_done: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def message(self) -> str:
        return (
            f"Processed {self.processed} reminder(s): {self.successfully_called} successful, "
            f"{self.scheduled_for_retry} retrying, {self.escalated_to_backup} escalated, "
            f"{self.marked_as_done} completed"
        )

    def record_transition(self, transition: Transition) -> None:
        if transition.is_escalation:
            self.escalated_to_backup += 1
        elif transition.is_retry:
            self.scheduled_for_retry += 1
        elif transition.audit_outcome == "call_completed":
            self.successfully_called += 1
        else:
            self.marked_as_done += 1

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        row["success"] = True
        row["message"] = self.message
        return row


class Dispatcher:
    """
    One scheduler tick: claim due reminders and start their calls.

    Call outcomes normally arrive later through the call-status callback.
    When the gateway cannot place a call, the injected outcome source
    stands in for the provider so the reminder still advances.
    """

    def __init__(
        self,
        store: JsonReminderStore,
        gateway: VoiceGateway,
        *,
        policy: Optional[ReminderPolicy] = None,
        outcome_source: Optional[OutcomeSource] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.policy = policy or ReminderPolicy()
        self.outcome_source = outcome_source or AlwaysFailOutcomeSource()

    def tick(self, *, now_utc: Optional[datetime] = None) -> TickSummary:
        now = now_utc or utc_now()
        summary = TickSummary()
        due = self.store.list_due_reminders(now_utc=now)
        logger.info(f"Found {len(due)} due reminders to process")

        for candidate in due:
            try:
                self._process_candidate(candidate, now_utc=now, summary=summary)
            except Exception as exc:
                summary.errors += 1
                logger.exception(f"Error processing reminder {candidate.id}: {exc}")

        logger.info(f"Tick summary: {summary.message}")
        return summary

    def _process_candidate(self, candidate: Reminder, *, now_utc: datetime, summary: TickSummary) -> None:
        claim = self._claim(candidate.id, now_utc=now_utc)
        if claim is None:
            summary.skipped += 1
            logger.info(f"Skipping reminder {candidate.id} - already processed or not due")
            return

        reminder, role = claim
        summary.processed += 1
        if reminder.status == ReminderStatus.DONE:
            summary.marked_as_done += 1
            logger.error(f"No phone number available for reminder {reminder.id}")
            return

        phone = reminder.phone_for_role(role) or ""
        logger.info(f"Processing reminder {reminder.id}: calling {role.value} phone {phone}")
        try:
            result = self.gateway.place_call(to_phone=phone, reminder_id=reminder.id, title=reminder.title)
        except Exception as exc:
            result = CallResult(success=False, error=f"{exc.__class__.__name__}: {exc}")

        if result.success and result.call_sid:
            self._record_call_started(reminder, phone=phone, call_sid=result.call_sid, now_utc=now_utc)
            summary.successfully_called += 1
            logger.info(f"Call initiated for reminder {reminder.id} with SID {result.call_sid}")
            return

        logger.warning(
            f"Call initiation failed for reminder {reminder.id}: {result.error}; using fallback outcome"
        )
        transition = self._apply_fallback_outcome(reminder, role=role, phone=phone, error=result.error, now_utc=now_utc)
        if transition is not None:
            summary.record_transition(transition)

    def _claim(self, reminder_id: str, *, now_utc: datetime) -> Optional[Tuple[Reminder, CallRole]]:
        roles: List[CallRole] = []

        def mutate(reminder: Reminder) -> List[AuditEntry]:
            # Role is fixed here, from the status the reminder had before the claim.
            role = role_for_status(reminder.status)
            roles.append(role)
            reminder.call_role = role
            if reminder.phone_for_role(role) is None:
                reminder.status = ensure_transition(reminder.status, ReminderStatus.DONE)
                reminder.last_outcome = "No phone number available"
                return [AuditEntry(outcome="no_phone_available", transcript=f"No {role.value} phone configured")]
            reminder.status = ensure_transition(reminder.status, ReminderStatus.CALLING)
            reminder.last_outcome = "Initiating call"
            return [AuditEntry(outcome="call_initiating", transcript=f"Claimed for {role.value} call")]

        claimed = self.store.conditional_update(
            reminder_id,
            precondition=lambda r: r.is_claimable(now_utc),
            mutate=mutate,
            now_utc=now_utc,
        )
        if claimed is None:
            return None
        return claimed, roles[0]

    def _record_call_started(self, reminder: Reminder, *, phone: str, call_sid: str, now_utc: datetime) -> None:
        entry = AuditEntry(
            outcome="initiated",
            call_sid=call_sid,
            transcript=f"Call initiated to {phone} for: {reminder.title}",
        )

        def mutate(current: Reminder) -> List[AuditEntry]:
            current.last_outcome = "Call in progress"
            return [entry]

        updated = self.store.conditional_update(
            reminder.id,
            precondition=lambda r: r.status == ReminderStatus.CALLING,
            mutate=mutate,
            now_utc=now_utc,
        )
        if updated is None:
            # A status callback already moved the reminder on; keep the audit row only.
            self.store.append_call_log(reminder.id, entry, now_utc=now_utc)

    def _apply_fallback_outcome(
        self,
        reminder: Reminder,
        *,
        role: CallRole,
        phone: str,
        error: Optional[str],
        now_utc: datetime,
    ) -> Optional[Transition]:
        diagnostic = AuditEntry(
            outcome="gateway_unavailable",
            transcript=f"Call to {phone} not placed (gateway error: {error or 'unknown'})",
        )
        outcome_class = self.outcome_source.draw()
        label = "synthetic_success" if outcome_class == OutcomeClass.SUCCESS else "no_answer"
        applied: List[Transition] = []

        def mutate(current: Reminder) -> List[AuditEntry]:
            transition = compute_transition(
                role=role,
                outcome_class=outcome_class,
                attempts=current.attempts,
                backup_attempts=current.backup_attempts,
                has_backup_phone=bool(current.backup_phone),
                policy=self.policy,
                now_utc=now_utc,
                outcome_label=label,
            )
            transition.apply_to(current)
            applied.append(transition)
            return [
                diagnostic,
                AuditEntry(outcome=transition.audit_outcome, transcript=transition.last_outcome),
            ]

        updated = self.store.conditional_update(
            reminder.id,
            precondition=lambda r: r.status == ReminderStatus.CALLING,
            mutate=mutate,
            now_utc=now_utc,
        )
        if updated is None:
            self.store.append_call_log(reminder.id, diagnostic, now_utc=now_utc)
            return None
        logger.info(f"Reminder {reminder.id} -> {updated.status.value}: {updated.last_outcome}")
        return applied[0]
