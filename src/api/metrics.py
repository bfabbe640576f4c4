from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# Audit tags that end a reminder without the user having acknowledged it.
_EXHAUSTED_OUTCOMES = {"max_attempts_primary", "max_attempts_backup", "no_phone_available", "call_ended"}


def _build_daily_rows(daily: Dict[str, Dict[str, int]], *, trend_days: int) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    unknown_row: Optional[Dict[str, Any]] = None

    for date_key, counters in daily.items():
        row = {
            "date": date_key,
            "calls_initiated": counters["calls_initiated"],
            "confirmed": counters["confirmed"],
            "snoozed": counters["snoozed"],
            "exhausted": counters["exhausted"],
        }
        if date_key == "unknown":
            unknown_row = row
        else:
            rows.append(row)

    rows.sort(key=lambda item: item["date"])
    if trend_days > 0:
        rows = rows[-trend_days:]
    if unknown_row is not None:
        rows.append(unknown_row)
    return rows


def build_reminder_metrics_summary(
    reminders: List[Dict[str, Any]],
    call_logs: List[Dict[str, Any]],
    *,
    trend_days: int = 14,
) -> Dict[str, Any]:
    status_counts: Counter[str] = Counter()
    attempts_total = 0
    backup_attempts_total = 0
    escalated_reminders = 0

    for row in reminders:
        if not isinstance(row, dict):
            continue
        status_counts[str(row.get("status", "unknown"))] += 1
        attempts_total += int(row.get("attempts", 0) or 0)
        backup_attempts = int(row.get("backup_attempts", 0) or 0)
        backup_attempts_total += backup_attempts
        if backup_attempts > 0 or row.get("status") == "ESCALATED":
            escalated_reminders += 1

    outcome_counts: Counter[str] = Counter()
    intent_counts: Counter[str] = Counter()
    daily: Dict[str, Dict[str, int]] = defaultdict(
        lambda: {"calls_initiated": 0, "confirmed": 0, "snoozed": 0, "exhausted": 0}
    )

    for log in call_logs:
        if not isinstance(log, dict):
            continue
        outcome = log.get("outcome")
        if not isinstance(outcome, str) or not outcome:
            continue
        outcome_counts[outcome] += 1

        created_at = _parse_iso_datetime(log.get("created_at_utc"))
        day = created_at.date().isoformat() if created_at else "unknown"
        if outcome == "initiated":
            daily[day]["calls_initiated"] += 1
        elif outcome == "completed" and log.get("intent") == "confirmed":
            daily[day]["confirmed"] += 1
        elif outcome == "snoozed":
            daily[day]["snoozed"] += 1
        elif outcome in _EXHAUSTED_OUTCOMES:
            daily[day]["exhausted"] += 1

        # gather_received rows carry the intent too; count the applied one only.
        intent = log.get("intent")
        if isinstance(intent, str) and intent and outcome != "gather_received":
            intent_counts[intent] += 1

    reminders_total = sum(status_counts.values())
    done_total = int(status_counts.get("DONE", 0))
    confirmed_total = int(intent_counts.get("confirmed", 0))

    return {
        "generated_at_utc": _utc_now_iso(),
        "reminders_total": reminders_total,
        "status_counts": dict(status_counts),
        "outcome_counts": dict(outcome_counts),
        "intent_counts": dict(intent_counts),
        "escalated_reminders": escalated_reminders,
        "avg_primary_attempts": round(attempts_total / reminders_total, 2) if reminders_total else None,
        "avg_backup_attempts": round(backup_attempts_total / reminders_total, 2) if reminders_total else None,
        "confirmation_rate_done": round(confirmed_total / done_total, 4) if done_total else None,
        "daily": _build_daily_rows(daily, trend_days=trend_days),
    }
