from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from src.api.dispatcher import Dispatcher
from src.api.outcome_processor import OutcomeProcessor
from src.api.reminder_lifecycle import CallRole, ReminderPolicy, ReminderStatus
from src.api.reminder_store import JsonReminderStore
from src.api.response_processor import ResponseProcessor
from src.api.voice_gateway import CallResult


NOW = datetime(2026, 2, 8, 12, 0, tzinfo=timezone.utc)


class SequentialGateway:
    def __init__(self) -> None:
        self.calls = []

    def place_call(self, *, to_phone: str, reminder_id: str, title: str) -> CallResult:
        self.calls.append(to_phone)
        return CallResult(success=True, call_sid=f"CA{len(self.calls)}")


class OutcomeProcessorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = JsonReminderStore(root_dir=self._tmp.name)
        self.gateway = SequentialGateway()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _calling_reminder(self, *, backup_phone=None, policy=None):
        reminder = self.store.create_reminder(
            title="Water the plants",
            primary_phone="+15551234567",
            backup_phone=backup_phone,
            scheduled_at_utc=NOW - timedelta(minutes=1),
            now_utc=NOW - timedelta(hours=1),
        )
        Dispatcher(self.store, self.gateway, policy=policy).tick(now_utc=NOW)
        return self.store.get_reminder(reminder.id)

    def _outcomes(self, reminder_id):
        return [log.outcome for log in self.store.list_call_logs(reminder_id)]

    def test_busy_with_backup_escalates(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        result = OutcomeProcessor(self.store).process(
            reminder_id=reminder.id, call_status="busy", call_sid="CA1", now_utc=NOW
        )

        self.assertEqual(result.action, "transitioned")
        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.ESCALATED)
        self.assertEqual(current.attempts, 1)
        self.assertEqual(self._outcomes(reminder.id)[:2], ["escalated_to_backup", "status_busy"])

    def test_escalation_then_backup_confirmation_stays_done(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        processor = OutcomeProcessor(self.store)
        processor.process(reminder_id=reminder.id, call_status="busy", call_sid="CA1", now_utc=NOW)

        later = NOW + timedelta(minutes=2)
        Dispatcher(self.store, self.gateway).tick(now_utc=later)
        claimed = self.store.get_reminder(reminder.id)
        self.assertEqual(claimed.call_role, CallRole.BACKUP)
        self.assertEqual(self.gateway.calls[-1], "+15557654321")

        ResponseProcessor(self.store).process(
            reminder_id=reminder.id, user_input="yes", call_sid="CA2", now_utc=later
        )
        result = processor.process(reminder_id=reminder.id, call_status="completed", call_sid="CA2", now_utc=later)

        self.assertEqual(result.action, "already_done")
        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.DONE)
        self.assertEqual(current.last_outcome, "confirmed by user")
        self.assertEqual(current.backup_attempts, 0)

    def test_backup_no_answer_exhausts_backup(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        processor = OutcomeProcessor(self.store)
        processor.process(reminder_id=reminder.id, call_status="no-answer", call_sid="CA1", now_utc=NOW)
        Dispatcher(self.store, self.gateway).tick(now_utc=NOW + timedelta(minutes=2))

        processor.process(reminder_id=reminder.id, call_status="no-answer", call_sid="CA2", now_utc=NOW)

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.DONE)
        self.assertEqual(current.attempts, 1)
        self.assertEqual(current.backup_attempts, 1)
        self.assertEqual(self._outcomes(reminder.id)[0], "max_attempts_backup")

    def test_no_answer_without_backup_exhausts_primary(self):
        reminder = self._calling_reminder()
        OutcomeProcessor(self.store).process(
            reminder_id=reminder.id, call_status="no-answer", call_sid="CA1", now_utc=NOW
        )

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.DONE)
        self.assertEqual(current.attempts, 1)
        self.assertEqual(current.backup_attempts, 0)
        self.assertIn("no backup available", current.last_outcome)
        self.assertEqual(self._outcomes(reminder.id)[:2], ["max_attempts_primary", "status_no_answer"])

    def test_no_answer_below_limit_retries(self):
        policy = ReminderPolicy(max_primary_attempts=2)
        reminder = self._calling_reminder(policy=policy)
        OutcomeProcessor(self.store, policy=policy).process(
            reminder_id=reminder.id, call_status="no-answer", call_sid="CA1", now_utc=NOW
        )

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.RETRYING)
        self.assertEqual(current.attempts, 1)
        self.assertEqual(self._outcomes(reminder.id)[0], "retry_primary_scheduled")

    def test_completed_without_confirmation_is_downgraded(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        OutcomeProcessor(self.store).process(
            reminder_id=reminder.id, call_status="completed", call_sid="CA1", duration="12", now_utc=NOW
        )

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.ESCALATED)
        outcomes = self._outcomes(reminder.id)
        self.assertEqual(outcomes[:3], ["escalated_to_backup", "completed_no_confirmation", "status_completed"])
        status_row = self.store.list_call_logs(reminder.id)[2]
        self.assertEqual(status_row.transcript, "Call duration: 12 seconds")

    def test_duplicate_terminal_event_is_idempotent(self):
        policy = ReminderPolicy(max_primary_attempts=3)
        reminder = self._calling_reminder(policy=policy)
        processor = OutcomeProcessor(self.store, policy=policy)
        processor.process(reminder_id=reminder.id, call_status="busy", call_sid="CA1", now_utc=NOW)
        result = processor.process(reminder_id=reminder.id, call_status="busy", call_sid="CA1", now_utc=NOW)

        self.assertEqual(result.action, "stale")
        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.RETRYING)
        self.assertEqual(current.attempts, 1)
        self.assertEqual(self._outcomes(reminder.id).count("status_busy"), 2)

    def test_intermediate_status_only_audits(self):
        reminder = self._calling_reminder()
        for status in ("initiated", "ringing", "in-progress"):
            result = OutcomeProcessor(self.store).process(
                reminder_id=reminder.id, call_status=status, call_sid="CA1", now_utc=NOW
            )
            self.assertEqual(result.action, "intermediate")

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.CALLING)
        self.assertEqual(self._outcomes(reminder.id)[0], "status_in-progress")

    def test_canceled_is_terminal(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        OutcomeProcessor(self.store).process(
            reminder_id=reminder.id, call_status="canceled", call_sid="CA1", now_utc=NOW
        )

        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.DONE)
        self.assertEqual(current.last_outcome, "Call ended: canceled")

    def test_malformed_and_unknown_reminder_are_acknowledged(self):
        processor = OutcomeProcessor(self.store)
        malformed = processor.process(reminder_id=None, call_status="busy", call_sid="CA1")
        unknown = processor.process(reminder_id="rem_" + "0" * 32, call_status="busy", call_sid="CA1")

        self.assertTrue(malformed.acknowledged)
        self.assertEqual(malformed.action, "malformed")
        self.assertTrue(unknown.acknowledged)
        self.assertEqual(unknown.action, "unknown_reminder")

    def test_event_after_snooze_does_not_touch_reminder(self):
        reminder = self._calling_reminder(backup_phone="+15557654321")
        ResponseProcessor(self.store).process(
            reminder_id=reminder.id, user_input="2", call_sid="CA1", now_utc=NOW
        )
        result = OutcomeProcessor(self.store).process(
            reminder_id=reminder.id, call_status="completed", call_sid="CA1", now_utc=NOW
        )

        self.assertEqual(result.action, "stale")
        current = self.store.get_reminder(reminder.id)
        self.assertEqual(current.status, ReminderStatus.SCHEDULED)
        self.assertEqual(current.attempts, 0)


if __name__ == "__main__":
    unittest.main()
