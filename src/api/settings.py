from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from src.api.reminder_lifecycle import ReminderPolicy


@dataclass(frozen=True)
class Settings:
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    app_base_url: Optional[str] = None
    port: int = 8000
    data_dir: str = "runtime/reminders"
    policy: ReminderPolicy = ReminderPolicy()
    # "fail" reports every unreachable-gateway call as a failed attempt;
    # "seeded" draws from a deterministic generator (demo / test mode).
    fallback_outcome_mode: str = "fail"
    fallback_seed: int = 0
    fallback_success_rate: float = 0.7

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    def webhook_url(self, path: str) -> str:
        if self.app_base_url:
            return f"{self.app_base_url.rstrip('/')}{path}"
        return f"http://localhost:{self.port}{path}"


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build settings from the process environment.

    `.env` is loaded first when reading the real environment. Policy values
    are read once here; changing them requires a restart.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    mode = (env.get("FALLBACK_OUTCOME_MODE") or "fail").strip().lower()
    if mode not in {"fail", "seeded"}:
        raise ValueError(f"FALLBACK_OUTCOME_MODE must be 'fail' or 'seeded', got {mode!r}")

    policy = ReminderPolicy(
        max_primary_attempts=_int(env, "MAX_PRIMARY_ATTEMPTS", 1),
        max_backup_attempts=_int(env, "MAX_BACKUP_ATTEMPTS", 1),
        retry_delay_seconds=_int(env, "RETRY_DELAY_SECONDS", 60),
        snooze_seconds=_int(env, "SNOOZE_SECONDS", 3600),
    )
    return Settings(
        twilio_account_sid=env.get("TWILIO_ACCOUNT_SID") or None,
        twilio_auth_token=env.get("TWILIO_AUTH_TOKEN") or None,
        twilio_phone_number=env.get("TWILIO_PHONE_NUMBER") or None,
        app_base_url=env.get("APP_BASE_URL") or None,
        port=_int(env, "PORT", 8000),
        data_dir=env.get("REMINDER_DATA_DIR") or "runtime/reminders",
        policy=policy,
        fallback_outcome_mode=mode,
        fallback_seed=_int(env, "FALLBACK_SEED", 0),
        fallback_success_rate=_float(env, "FALLBACK_SUCCESS_RATE", 0.7),
    )
