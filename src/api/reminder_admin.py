from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import httpx

from src.api.reminder_lifecycle import (
    AuditEntry,
    Reminder,
    ReminderStatus,
    parse_iso_utc,
    to_iso_utc,
    utc_now,
)
from src.api.reminder_store import JsonReminderStore

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{10,14}$")
NOTIFY_TIMEOUT_SECONDS = 5.0


def is_e164(phone: str) -> bool:
    return bool(E164_PATTERN.match(phone or ""))


@dataclass(frozen=True)
class NewReminder:
    title: str
    primary_phone: str
    scheduled_at_utc: datetime
    backup_phone: Optional[str] = None


def validate_new_reminder(
    *,
    title: Optional[str],
    primary_phone: Optional[str],
    scheduled_at: Optional[str],
    backup_phone: Optional[str] = None,
) -> NewReminder:
    """Raises ValueError with a client-facing message on any invalid field."""
    if not title or not primary_phone or not scheduled_at:
        raise ValueError("Missing required fields: title, primaryPhone, scheduledAt")
    if not is_e164(primary_phone):
        raise ValueError("Primary phone must be in E.164 format (e.g., +15551234567)")
    if backup_phone and not is_e164(backup_phone):
        raise ValueError("Backup phone must be in E.164 format (e.g., +15551234567)")
    try:
        scheduled = parse_iso_utc(scheduled_at)
    except (TypeError, ValueError):
        raise ValueError("Invalid scheduledAt date")
    return NewReminder(
        title=title,
        primary_phone=primary_phone,
        backup_phone=backup_phone or None,
        scheduled_at_utc=scheduled,
    )


def create_reminder(
    store: JsonReminderStore,
    new_reminder: NewReminder,
    *,
    now_utc: Optional[datetime] = None,
) -> Reminder:
    reminder = store.create_reminder(
        title=new_reminder.title,
        primary_phone=new_reminder.primary_phone,
        backup_phone=new_reminder.backup_phone,
        scheduled_at_utc=new_reminder.scheduled_at_utc,
        now_utc=now_utc,
    )
    logger.info(f"Created reminder {reminder.id} scheduled for {reminder.scheduled_at_utc}")
    return reminder


def reset_for_call_now(
    store: JsonReminderStore,
    reminder_id: str,
    *,
    now_utc: Optional[datetime] = None,
) -> Reminder:
    """
    Make a reminder due immediately with fresh counters.

    Raises FileNotFoundError for unknown ids and ValueError while a call is
    in flight.
    """
    now = now_utc or utc_now()

    def mutate(current: Reminder) -> List[AuditEntry]:
        # Manual override: the only path that may reopen a DONE reminder.
        current.status = ReminderStatus.SCHEDULED
        current.next_attempt_at_utc = to_iso_utc(now)
        current.attempts = 0
        current.backup_attempts = 0
        current.last_outcome = None
        current.call_role = None
        return [AuditEntry(outcome="manual_trigger", transcript="Call requested manually")]

    updated = store.conditional_update(
        reminder_id,
        precondition=lambda r: r.status != ReminderStatus.CALLING,
        mutate=mutate,
        now_utc=now,
    )
    if updated is None:
        # Only a terminal status callback moves a reminder out of CALLING.
        in_flight_sid = next((log.call_sid for log in store.list_call_logs(reminder_id) if log.call_sid), None)
        logger.warning(
            f"Call-now refused for reminder {reminder_id}: still CALLING, "
            f"awaiting status callback for call_sid={in_flight_sid}"
        )
        raise ValueError("Reminder is already being called")
    return updated


def notify_dispatcher(tick_url: str) -> bool:
    """Best-effort request for an immediate tick; the next scheduled tick covers failures."""
    try:
        response = httpx.post(tick_url, timeout=NOTIFY_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        logger.error(f"Failed to trigger scheduler at {tick_url}: {exc}")
        return False
    if response.status_code >= 400:
        logger.error(f"Scheduler tick failed with HTTP {response.status_code}, but reminder was updated")
        return False
    return True
