from __future__ import annotations

import json
import os
import re
import tempfile
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from src.api.reminder_lifecycle import (
    CLAIMABLE_STATUSES,
    AuditEntry,
    CallRole,
    CallLog,
    Reminder,
    ReminderStatus,
    parse_iso_utc,
    to_iso_utc,
    utc_now,
)


Precondition = Callable[[Reminder], bool]
Mutation = Callable[[Reminder], Sequence[AuditEntry]]

_REMINDER_ID_RE = re.compile(r"^rem_[0-9a-f]{32}$")


def _reminder_to_row(reminder: Reminder) -> Dict[str, Any]:
    row = asdict(reminder)
    row["status"] = reminder.status.value
    row["call_role"] = reminder.call_role.value if reminder.call_role else None
    return row


def _reminder_from_row(row: Dict[str, Any]) -> Reminder:
    return Reminder(
        id=str(row["id"]),
        title=str(row.get("title", "")),
        primary_phone=str(row.get("primary_phone", "")),
        backup_phone=row.get("backup_phone") or None,
        scheduled_at_utc=str(row["scheduled_at_utc"]),
        next_attempt_at_utc=str(row["next_attempt_at_utc"]),
        created_at_utc=str(row["created_at_utc"]),
        attempts=int(row.get("attempts", 0)),
        backup_attempts=int(row.get("backup_attempts", 0)),
        status=ReminderStatus(str(row.get("status", ReminderStatus.SCHEDULED.value))),
        last_outcome=row.get("last_outcome"),
        call_role=CallRole(str(row["call_role"])) if row.get("call_role") else None,
    )


def _call_log_from_row(row: Dict[str, Any]) -> CallLog:
    return CallLog(
        id=str(row["id"]),
        reminder_id=str(row["reminder_id"]),
        outcome=str(row.get("outcome", "")),
        created_at_utc=str(row.get("created_at_utc", "")),
        call_sid=row.get("call_sid"),
        transcript=row.get("transcript"),
        intent=row.get("intent"),
    )


def _due_sort_key(reminder: Reminder):
    return (
        parse_iso_utc(reminder.next_attempt_at_utc),
        parse_iso_utc(reminder.created_at_utc),
        reminder.id,
    )


class JsonReminderStore:
    """
    Persist reminders and their call logs in local JSON files.

    One file per reminder holds the reminder row and its append-only call
    log. Every write replaces the whole file, so a state change and the
    audit rows written with it land together or not at all.

    The lock is per instance: one process (the API server) must own the
    directory. Other processes go through the HTTP surface.
    """

    def __init__(self, root_dir: str | Path = "runtime/reminders") -> None:
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def generate_reminder_id(self) -> str:
        return f"rem_{uuid.uuid4().hex}"

    def generate_log_id(self) -> str:
        return f"log_{uuid.uuid4().hex}"

    def _path_for(self, reminder_id: str) -> Path:
        if not _REMINDER_ID_RE.match(reminder_id or ""):
            raise FileNotFoundError(f"Unknown reminder_id: {reminder_id}")
        return self.root_dir / f"{reminder_id}.json"

    def create_reminder(
        self,
        *,
        title: str,
        primary_phone: str,
        scheduled_at_utc: datetime,
        backup_phone: Optional[str] = None,
        now_utc: Optional[datetime] = None,
    ) -> Reminder:
        now = now_utc or utc_now()
        scheduled = to_iso_utc(scheduled_at_utc)
        reminder = Reminder(
            id=self.generate_reminder_id(),
            title=title,
            primary_phone=primary_phone,
            backup_phone=backup_phone or None,
            scheduled_at_utc=scheduled,
            next_attempt_at_utc=scheduled,
            created_at_utc=to_iso_utc(now),
        )
        with self._lock:
            self._write_locked({"reminder": _reminder_to_row(reminder), "call_logs": []})
        return reminder

    def get_reminder(self, reminder_id: str) -> Reminder:
        with self._lock:
            return _reminder_from_row(self._read_locked(reminder_id)["reminder"])

    def list_reminders(
        self,
        *,
        statuses: Optional[Iterable[ReminderStatus]] = None,
    ) -> List[Reminder]:
        with self._lock:
            reminders = [_reminder_from_row(row["reminder"]) for row in self._load_all_locked()]
        if statuses is not None:
            wanted = set(statuses)
            reminders = [r for r in reminders if r.status in wanted]
        reminders.sort(key=lambda r: (parse_iso_utc(r.created_at_utc), r.id), reverse=True)
        return reminders

    def list_due_reminders(self, *, now_utc: Optional[datetime] = None) -> List[Reminder]:
        now = now_utc or utc_now()
        with self._lock:
            reminders = [_reminder_from_row(row["reminder"]) for row in self._load_all_locked()]
        due = [r for r in reminders if r.status in CLAIMABLE_STATUSES and r.is_due(now)]
        due.sort(key=_due_sort_key)
        return due

    def list_call_logs(self, reminder_id: str) -> List[CallLog]:
        """Call logs for one reminder, newest first."""
        with self._lock:
            rows = self._read_locked(reminder_id).get("call_logs", [])
        logs = [_call_log_from_row(row) for row in rows if isinstance(row, dict)]
        logs.reverse()
        return logs

    def list_all_call_logs(self) -> List[CallLog]:
        with self._lock:
            rows = [log for record in self._load_all_locked() for log in record.get("call_logs", [])]
        logs = [_call_log_from_row(row) for row in rows if isinstance(row, dict)]
        logs.sort(key=lambda log: parse_iso_utc(log.created_at_utc), reverse=True)
        return logs

    def find_call_intent(
        self,
        reminder_id: str,
        *,
        call_sid: str,
        intents: Iterable[str],
    ) -> Optional[str]:
        """Most recent recorded intent among `intents` for one physical call."""
        wanted = set(intents)
        for log in self.list_call_logs(reminder_id):
            if log.call_sid == call_sid and log.intent in wanted:
                return log.intent
        return None

    def append_call_log(
        self,
        reminder_id: str,
        entry: AuditEntry,
        *,
        now_utc: Optional[datetime] = None,
    ) -> CallLog:
        with self._lock:
            record = self._read_locked(reminder_id)
            logs = self._append_entries_locked(record, reminder_id, [entry], now_utc=now_utc)
            self._write_locked(record)
            return logs[0]

    def conditional_update(
        self,
        reminder_id: str,
        *,
        precondition: Precondition,
        mutate: Mutation,
        now_utc: Optional[datetime] = None,
    ) -> Optional[Reminder]:
        """
        Atomic check-and-set on one reminder.

        `precondition` sees the freshly read record; when it returns False
        nothing is written and None is returned. Otherwise `mutate` edits a
        copy in place and returns the audit entries to append alongside it.
        """
        with self._lock:
            record = self._read_locked(reminder_id)
            current = _reminder_from_row(record["reminder"])
            if not precondition(current):
                return None
            updated = replace(current)
            entries = list(mutate(updated))
            record["reminder"] = _reminder_to_row(updated)
            self._append_entries_locked(record, reminder_id, entries, now_utc=now_utc)
            self._write_locked(record)
            return updated

    def _append_entries_locked(
        self,
        record: Dict[str, Any],
        reminder_id: str,
        entries: Sequence[AuditEntry],
        *,
        now_utc: Optional[datetime],
    ) -> List[CallLog]:
        stamp = to_iso_utc(now_utc or utc_now())
        logs = [
            CallLog(
                id=self.generate_log_id(),
                reminder_id=reminder_id,
                outcome=entry.outcome,
                created_at_utc=stamp,
                call_sid=entry.call_sid,
                transcript=entry.transcript,
                intent=entry.intent,
            )
            for entry in entries
        ]
        record.setdefault("call_logs", []).extend(asdict(log) for log in logs)
        return logs

    def _load_all_locked(self) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for path in sorted(self.root_dir.glob("rem_*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    record = json.load(f)
            except (OSError, ValueError):
                continue
            if isinstance(record, dict) and isinstance(record.get("reminder"), dict):
                records.append(record)
        return records

    def _read_locked(self, reminder_id: str) -> Dict[str, Any]:
        path = self._path_for(reminder_id)
        if not path.exists():
            raise FileNotFoundError(f"Unknown reminder_id: {reminder_id}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_locked(self, record: Dict[str, Any]) -> None:
        path = self._path_for(str(record["reminder"]["id"]))
        fd, tmp_path = tempfile.mkstemp(dir=self.root_dir, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
