from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from src.voice_reminder.outcome_classifier import OutcomeClass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class ReminderStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CALLING = "CALLING"
    RETRYING = "RETRYING"
    ESCALATED = "ESCALATED"
    DONE = "DONE"


class CallRole(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"


CLAIMABLE_STATUSES: FrozenSet[ReminderStatus] = frozenset(
    {ReminderStatus.SCHEDULED, ReminderStatus.RETRYING, ReminderStatus.ESCALATED}
)


# Lifecycle graph. Anything not listed here is rejected.
ALLOWED_TRANSITIONS: Dict[ReminderStatus, FrozenSet[ReminderStatus]] = {
    ReminderStatus.SCHEDULED: frozenset({ReminderStatus.CALLING, ReminderStatus.SCHEDULED, ReminderStatus.DONE}),
    ReminderStatus.RETRYING: frozenset({ReminderStatus.CALLING, ReminderStatus.SCHEDULED, ReminderStatus.DONE}),
    ReminderStatus.ESCALATED: frozenset({ReminderStatus.CALLING, ReminderStatus.SCHEDULED, ReminderStatus.DONE}),
    ReminderStatus.CALLING: frozenset(
        {
            ReminderStatus.RETRYING,
            ReminderStatus.ESCALATED,
            ReminderStatus.SCHEDULED,
            ReminderStatus.DONE,
        }
    ),
    ReminderStatus.DONE: frozenset(),
}


def ensure_transition(current: ReminderStatus, target: ReminderStatus) -> ReminderStatus:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ValueError(f"Invalid transition: status={current.value}, target={target.value}")
    return target


def is_terminal_status(status: ReminderStatus) -> bool:
    return status == ReminderStatus.DONE


def role_for_status(status: ReminderStatus) -> CallRole:
    return CallRole.BACKUP if status == ReminderStatus.ESCALATED else CallRole.PRIMARY


@dataclass(frozen=True)
class ReminderPolicy:
    max_primary_attempts: int = 1
    max_backup_attempts: int = 1
    retry_delay_seconds: int = 60
    snooze_seconds: int = 3600


@dataclass
class Reminder:
    id: str
    title: str
    primary_phone: str
    scheduled_at_utc: str
    next_attempt_at_utc: str
    created_at_utc: str
    backup_phone: Optional[str] = None
    attempts: int = 0
    backup_attempts: int = 0
    status: ReminderStatus = ReminderStatus.SCHEDULED
    last_outcome: Optional[str] = None
    # Role of the attempt in flight, fixed when the reminder was claimed.
    call_role: Optional[CallRole] = None

    def is_due(self, now_utc: datetime) -> bool:
        return parse_iso_utc(self.next_attempt_at_utc) <= now_utc

    def is_claimable(self, now_utc: datetime) -> bool:
        return self.status in CLAIMABLE_STATUSES and self.is_due(now_utc)

    def phone_for_role(self, role: CallRole) -> Optional[str]:
        if role == CallRole.BACKUP:
            return self.backup_phone or None
        return self.primary_phone or None


@dataclass
class CallLog:
    id: str
    reminder_id: str
    outcome: str
    created_at_utc: str
    call_sid: Optional[str] = None
    transcript: Optional[str] = None
    intent: Optional[str] = None


@dataclass(frozen=True)
class AuditEntry:
    """A CallLog row that has not been committed yet."""

    outcome: str
    transcript: Optional[str] = None
    call_sid: Optional[str] = None
    intent: Optional[str] = None


@dataclass(frozen=True)
class Transition:
    status: ReminderStatus
    attempts: int
    backup_attempts: int
    next_attempt_at_utc: Optional[str]
    audit_outcome: str
    last_outcome: str

    @property
    def is_retry(self) -> bool:
        return self.audit_outcome in {"retry_primary_scheduled", "retry_backup_scheduled"}

    @property
    def is_escalation(self) -> bool:
        return self.audit_outcome == "escalated_to_backup"

    def apply_to(self, reminder: Reminder) -> None:
        reminder.status = ensure_transition(reminder.status, self.status)
        reminder.attempts = self.attempts
        reminder.backup_attempts = self.backup_attempts
        if self.next_attempt_at_utc is not None:
            reminder.next_attempt_at_utc = self.next_attempt_at_utc
        reminder.last_outcome = self.last_outcome


def compute_transition(
    *,
    role: CallRole,
    outcome_class: OutcomeClass,
    attempts: int,
    backup_attempts: int,
    has_backup_phone: bool,
    policy: ReminderPolicy,
    now_utc: datetime,
    outcome_label: str = "failed",
) -> Transition:
    """
    Pure transition table for one resolved call attempt.

    `role` must be the role fixed when the reminder was claimed, not a
    role re-derived from whatever status the record holds now.
    """
    if outcome_class == OutcomeClass.IGNORE:
        raise ValueError("Intermediate outcomes do not drive transitions.")

    retry_at = to_iso_utc(now_utc + timedelta(seconds=policy.retry_delay_seconds))

    if outcome_class == OutcomeClass.SUCCESS:
        return Transition(
            status=ReminderStatus.DONE,
            attempts=attempts,
            backup_attempts=backup_attempts,
            next_attempt_at_utc=None,
            audit_outcome="call_completed",
            last_outcome="Call completed successfully",
        )

    if outcome_class == OutcomeClass.NON_RETRYABLE_FAILURE:
        return Transition(
            status=ReminderStatus.DONE,
            attempts=attempts,
            backup_attempts=backup_attempts,
            next_attempt_at_utc=None,
            audit_outcome="call_ended",
            last_outcome=f"Call ended: {outcome_label}",
        )

    if role == CallRole.BACKUP:
        new_backup_attempts = backup_attempts + 1
        if new_backup_attempts < policy.max_backup_attempts:
            return Transition(
                status=ReminderStatus.ESCALATED,
                attempts=attempts,
                backup_attempts=new_backup_attempts,
                next_attempt_at_utc=retry_at,
                audit_outcome="retry_backup_scheduled",
                last_outcome=f"Backup attempt {new_backup_attempts} failed ({outcome_label}), retrying",
            )
        return Transition(
            status=ReminderStatus.DONE,
            attempts=attempts,
            backup_attempts=new_backup_attempts,
            next_attempt_at_utc=None,
            audit_outcome="max_attempts_backup",
            last_outcome=f"Max backup attempts ({policy.max_backup_attempts}) reached - {outcome_label}",
        )

    new_attempts = attempts + 1
    if new_attempts < policy.max_primary_attempts:
        return Transition(
            status=ReminderStatus.RETRYING,
            attempts=new_attempts,
            backup_attempts=backup_attempts,
            next_attempt_at_utc=retry_at,
            audit_outcome="retry_primary_scheduled",
            last_outcome=f"Primary attempt {new_attempts} failed ({outcome_label}), retrying",
        )
    if has_backup_phone:
        return Transition(
            status=ReminderStatus.ESCALATED,
            attempts=new_attempts,
            backup_attempts=backup_attempts,
            next_attempt_at_utc=retry_at,
            audit_outcome="escalated_to_backup",
            last_outcome=f"Primary attempts exhausted ({outcome_label}), escalating to backup",
        )
    return Transition(
        status=ReminderStatus.DONE,
        attempts=new_attempts,
        backup_attempts=backup_attempts,
        next_attempt_at_utc=None,
        audit_outcome="max_attempts_primary",
        last_outcome=f"Max primary attempts ({policy.max_primary_attempts}) reached - {outcome_label}, no backup available",
    )


def compute_confirm_transition(reminder: Reminder) -> Transition:
    return Transition(
        status=ReminderStatus.DONE,
        attempts=reminder.attempts,
        backup_attempts=reminder.backup_attempts,
        next_attempt_at_utc=None,
        audit_outcome="completed",
        last_outcome="confirmed by user",
    )


def compute_snooze_transition(*, policy: ReminderPolicy, now_utc: datetime) -> Transition:
    # User override: counters restart, regardless of the failure table.
    return Transition(
        status=ReminderStatus.SCHEDULED,
        attempts=0,
        backup_attempts=0,
        next_attempt_at_utc=to_iso_utc(now_utc + timedelta(seconds=policy.snooze_seconds)),
        audit_outcome="snoozed",
        last_outcome=f"Snoozed by user for {_describe_delay(policy.snooze_seconds)}",
    )


def _describe_delay(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "1 hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        minutes = seconds // 60
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"
