from __future__ import annotations

from typing import Optional

from twilio.twiml.voice_response import Gather, VoiceResponse


VOICE = "alice"
GATHER_TIMEOUT_SECONDS = 5
GATHER_HINTS = "confirm, snooze, yes, later, acknowledge"

INSTRUCTIONS_TEXT = (
    "Please say confirm or press 1 to acknowledge this reminder. "
    "Say snooze or press 2 to reschedule for one hour from now."
)
NO_INPUT_TEXT = "We did not receive your response. Goodbye."
CONFIRMED_TEXT = "Thank you! Your reminder has been acknowledged. Have a great day!"
SNOOZED_TEXT = "Understood! I will call you back in one hour. Goodbye!"
COULD_NOT_PROCESS_TEXT = "Sorry, we could not process your response. Goodbye."
REPROMPT_TEXT = (
    "Sorry, I did not understand your response. Please try again. "
    "Say confirm or press 1 to acknowledge, or say snooze or press 2 to reschedule."
)
PROMPT_ERROR_TEXT = "Sorry, there was an error processing your reminder. Please try again later."
GATHER_ERROR_TEXT = "Sorry, there was an error processing your response. Goodbye."


def _build_gather(action_url: str, prompt_text: str) -> Gather:
    gather = Gather(
        input="speech dtmf",
        action=action_url,
        method="POST",
        timeout=GATHER_TIMEOUT_SECONDS,
        num_digits=1,
        speech_timeout="auto",
        hints=GATHER_HINTS,
    )
    gather.say(prompt_text, voice=VOICE)
    return gather


def build_reminder_prompt(*, title: Optional[str], gather_action_url: str) -> str:
    """Opening script: speak the reminder, then solicit confirm / snooze input."""
    response = VoiceResponse()
    response.say(f"Hello! This is a reminder about: {title or 'your reminder'}.", voice=VOICE)
    response.append(_build_gather(gather_action_url, INSTRUCTIONS_TEXT))
    # Only reached when the gather times out without input.
    response.say(NO_INPUT_TEXT, voice=VOICE)
    return str(response)


def build_reprompt(*, gather_action_url: str) -> str:
    response = VoiceResponse()
    response.say(REPROMPT_TEXT, voice=VOICE)
    response.append(_build_gather(gather_action_url, "Waiting for your response."))
    response.say(NO_INPUT_TEXT, voice=VOICE)
    return str(response)


def build_goodbye(text: str) -> str:
    response = VoiceResponse()
    response.say(text, voice=VOICE)
    response.hangup()
    return str(response)
