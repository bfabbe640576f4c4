from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from src.api.reminder_lifecycle import ReminderPolicy, ReminderStatus, parse_iso_utc
from src.api.reminder_store import JsonReminderStore
from src.api.response_processor import ResponseProcessor


NOW = datetime(2026, 2, 8, 12, 0, tzinfo=timezone.utc)


def _set_status(store, reminder_id, status, *, attempts=0, backup_attempts=0):
    def mutate(r):
        r.status = status
        r.attempts = attempts
        r.backup_attempts = backup_attempts
        return []

    store.conditional_update(reminder_id, precondition=lambda r: True, mutate=mutate)


class ResponseProcessorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = JsonReminderStore(root_dir=self._tmp.name)
        self.reminder = self.store.create_reminder(
            title="Doctor appointment",
            primary_phone="+15551234567",
            scheduled_at_utc=NOW,
            now_utc=NOW,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_snooze_phrase_reschedules_and_resets(self):
        _set_status(self.store, self.reminder.id, ReminderStatus.CALLING, attempts=1)
        result = ResponseProcessor(self.store).process(
            reminder_id=self.reminder.id, user_input="please snooze this", call_sid="CA1", now_utc=NOW
        )

        self.assertEqual(result.reply, "snoozed")
        current = self.store.get_reminder(self.reminder.id)
        self.assertEqual(current.status, ReminderStatus.SCHEDULED)
        self.assertEqual(current.attempts, 0)
        self.assertEqual(parse_iso_utc(current.next_attempt_at_utc), NOW + timedelta(hours=1))

        logs = self.store.list_call_logs(self.reminder.id)
        self.assertEqual([log.outcome for log in logs], ["snoozed", "gather_received"])
        self.assertEqual(logs[1].transcript, "please snooze this")
        self.assertEqual(logs[1].intent, "snoozed")

    def test_custom_snooze_duration(self):
        policy = ReminderPolicy(snooze_seconds=900)
        ResponseProcessor(self.store, policy=policy).process(
            reminder_id=self.reminder.id, user_input="later", call_sid="CA1", now_utc=NOW
        )
        current = self.store.get_reminder(self.reminder.id)
        self.assertEqual(parse_iso_utc(current.next_attempt_at_utc), NOW + timedelta(minutes=15))
        self.assertEqual(current.last_outcome, "Snoozed by user for 15 minutes")

    def test_confirm_from_any_non_done_status(self):
        for status in (ReminderStatus.CALLING, ReminderStatus.RETRYING, ReminderStatus.ESCALATED):
            _set_status(self.store, self.reminder.id, status, attempts=1)
            result = ResponseProcessor(self.store).process(
                reminder_id=self.reminder.id, user_input="1", call_sid="CA1", now_utc=NOW
            )
            self.assertEqual(result.reply, "confirmed")
            current = self.store.get_reminder(self.reminder.id)
            self.assertEqual(current.status, ReminderStatus.DONE)
            self.assertEqual(current.attempts, 1)

            # Re-open for the next iteration.
            _set_status(self.store, self.reminder.id, ReminderStatus.SCHEDULED)

    def test_confirm_writes_completed_row_with_intent(self):
        ResponseProcessor(self.store).process(
            reminder_id=self.reminder.id, user_input="Yes", call_sid="CA9", now_utc=NOW
        )
        latest = self.store.list_call_logs(self.reminder.id)[0]
        self.assertEqual(latest.outcome, "completed")
        self.assertEqual(latest.intent, "confirmed")
        self.assertEqual(latest.call_sid, "CA9")

    def test_unknown_input_reprompts_without_change(self):
        result = ResponseProcessor(self.store).process(
            reminder_id=self.reminder.id, user_input="what?", call_sid="CA1", now_utc=NOW
        )

        self.assertEqual(result.reply, "reprompt")
        self.assertEqual(self.store.get_reminder(self.reminder.id).status, ReminderStatus.SCHEDULED)
        logs = self.store.list_call_logs(self.reminder.id)
        self.assertEqual(len(logs), 1)
        self.assertIsNone(logs[0].intent)

    def test_empty_input_or_missing_id_cannot_be_processed(self):
        processor = ResponseProcessor(self.store)
        self.assertEqual(
            processor.process(reminder_id=self.reminder.id, user_input="  ", call_sid="CA1").reply,
            "could_not_process",
        )
        self.assertEqual(processor.process(reminder_id=None, user_input="1", call_sid="CA1").reply, "could_not_process")
        self.assertEqual(self.store.list_call_logs(self.reminder.id), [])

    def test_unknown_reminder_cannot_be_processed(self):
        result = ResponseProcessor(self.store).process(
            reminder_id="rem_" + "0" * 32, user_input="1", call_sid="CA1"
        )
        self.assertEqual(result.reply, "could_not_process")

    def test_done_reminder_is_not_reopened(self):
        _set_status(self.store, self.reminder.id, ReminderStatus.DONE)
        result = ResponseProcessor(self.store).process(
            reminder_id=self.reminder.id, user_input="snooze", call_sid="CA1", now_utc=NOW
        )

        self.assertEqual(result.reply, "snoozed")
        self.assertIsNone(result.reminder)
        self.assertEqual(self.store.get_reminder(self.reminder.id).status, ReminderStatus.DONE)


if __name__ == "__main__":
    unittest.main()
