import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from src.api.dispatcher import Dispatcher
from src.api.fallback_outcomes import build_outcome_source
from src.api.metrics import build_reminder_metrics_summary
from src.api.outcome_processor import OutcomeProcessor
from src.api.reminder_admin import (
    create_reminder,
    notify_dispatcher,
    reset_for_call_now,
    validate_new_reminder,
)
from src.api.reminder_lifecycle import CallLog, Reminder
from src.api.reminder_store import JsonReminderStore
from src.api.response_processor import ResponseProcessor
from src.api.settings import load_settings
from src.api.voice_gateway import TwilioVoiceGateway
from src.voice_reminder import voice_scripts

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = load_settings()

app = FastAPI(title="Reminder Call API")
reminder_store = JsonReminderStore(root_dir=settings.data_dir)
dispatcher = Dispatcher(
    reminder_store,
    TwilioVoiceGateway(settings),
    policy=settings.policy,
    outcome_source=build_outcome_source(settings),
)
outcome_processor = OutcomeProcessor(reminder_store, policy=settings.policy)
response_processor = ResponseProcessor(reminder_store, policy=settings.policy)


class CreateReminderRequest(BaseModel):
    title: Optional[str] = None
    primaryPhone: Optional[str] = None
    backupPhone: Optional[str] = None
    scheduledAt: Optional[str] = None


class CallNowRequest(BaseModel):
    reminderId: Optional[str] = None


def _serialize_reminder(reminder: Reminder, call_logs: Optional[List[CallLog]] = None) -> Dict[str, Any]:
    row = asdict(reminder)
    row["status"] = reminder.status.value
    row["call_role"] = reminder.call_role.value if reminder.call_role else None
    if call_logs is not None:
        row["call_logs"] = [asdict(log) for log in call_logs]
    return row


def _gather_url(reminder_id: str) -> str:
    return settings.webhook_url("/api/gather?" + urlencode({"reminderId": reminder_id}))


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="text/xml")


# ----- Management surface -----


@app.post("/api/reminders", status_code=201)
async def api_create_reminder(request: CreateReminderRequest):
    try:
        try:
            new_reminder = validate_new_reminder(
                title=request.title,
                primary_phone=request.primaryPhone,
                backup_phone=request.backupPhone,
                scheduled_at=request.scheduledAt,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _serialize_reminder(create_reminder(reminder_store, new_reminder))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error creating reminder")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/reminders")
async def api_list_reminders():
    try:
        return [
            _serialize_reminder(reminder, reminder_store.list_call_logs(reminder.id))
            for reminder in reminder_store.list_reminders()
        ]
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching reminders")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/reminders/{reminder_id}")
async def api_get_reminder(reminder_id: str):
    try:
        reminder = reminder_store.get_reminder(reminder_id)
        return _serialize_reminder(reminder, reminder_store.list_call_logs(reminder_id))
    except HTTPException:
        raise
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/call-now")
async def api_call_now(request: CallNowRequest, background_tasks: BackgroundTasks):
    try:
        if not request.reminderId:
            raise HTTPException(status_code=400, detail="Reminder ID is required")
        try:
            reminder = reset_for_call_now(reminder_store, request.reminderId)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail="Reminder not found")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        background_tasks.add_task(notify_dispatcher, settings.webhook_url("/api/scheduler/tick"))
        return {"success": True, "reminder": _serialize_reminder(reminder)}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error in call-now")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/scheduler/tick")
def api_scheduler_tick():
    # Sync handler: the gateway call blocks, so FastAPI runs this in its threadpool.
    try:
        return dispatcher.tick().to_dict()
    except Exception as e:
        logger.exception("Error in scheduler tick")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/metrics/summary")
async def api_get_metrics_summary():
    try:
        reminders = [_serialize_reminder(r) for r in reminder_store.list_reminders()]
        logs = [asdict(log) for log in reminder_store.list_all_call_logs()]
        return build_reminder_metrics_summary(reminders, logs)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ----- Telephony surface (always answers 200) -----


@app.api_route("/api/voice", methods=["GET", "POST"])
async def api_voice_prompt(request: Request):
    try:
        reminder_id = request.query_params.get("reminderId") or ""
        title = request.query_params.get("title") or "your reminder"
        return _twiml(voice_scripts.build_reminder_prompt(title=title, gather_action_url=_gather_url(reminder_id)))
    except Exception:
        logger.exception("Error in voice endpoint")
        return _twiml(voice_scripts.build_goodbye(voice_scripts.PROMPT_ERROR_TEXT))


@app.post("/api/gather")
async def api_gather(request: Request):
    try:
        reminder_id = request.query_params.get("reminderId")
        form = await request.form()
        speech = str(form.get("SpeechResult") or "")
        digits = str(form.get("Digits") or "")
        call_sid = str(form.get("CallSid") or "")

        result = response_processor.process(
            reminder_id=reminder_id,
            user_input=speech or digits,
            call_sid=call_sid,
        )
        if result.reply == "confirmed":
            return _twiml(voice_scripts.build_goodbye(voice_scripts.CONFIRMED_TEXT))
        if result.reply == "snoozed":
            return _twiml(voice_scripts.build_goodbye(voice_scripts.SNOOZED_TEXT))
        if result.reply == "reprompt":
            return _twiml(voice_scripts.build_reprompt(gather_action_url=_gather_url(str(reminder_id))))
        return _twiml(voice_scripts.build_goodbye(voice_scripts.COULD_NOT_PROCESS_TEXT))
    except Exception:
        logger.exception("Error in gather endpoint")
        return _twiml(voice_scripts.build_goodbye(voice_scripts.GATHER_ERROR_TEXT))


@app.post("/api/call-status")
async def api_call_status(request: Request):
    try:
        form = await request.form()
        outcome_processor.process(
            reminder_id=request.query_params.get("reminderId"),
            call_status=str(form.get("CallStatus") or ""),
            call_sid=str(form.get("CallSid") or ""),
            duration=str(form.get("CallDuration") or "") or None,
        )
    except Exception:
        # Never surface internal failures to the telephony provider.
        logger.exception("Error in call-status endpoint")
    return PlainTextResponse("OK")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
