"""TwiML responses returned to Twilio voice webhooks."""

from typing import Optional

from twilio.twiml.voice_response import Connect, Dial, VoiceResponse

DEFAULT_VOICE = "Polly.Joanna"
DEFAULT_APOLOGY = (
    "We apologize, but we are experiencing technical difficulties. "
    "Please try again later or contact us directly."
)


def build_stream_response(stream_url: str, call_sid: str) -> str:
    """Connect the call's media stream to the AI voice agent."""
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=stream_url)
    stream.parameter(name="callSid", value=call_sid)
    response.append(connect)
    return str(response)


def build_say_response(message: str, voice: str = DEFAULT_VOICE) -> str:
    """Speak a message and hang up."""
    response = VoiceResponse()
    response.say(message, voice=voice)
    response.hangup()
    return str(response)


def build_error_response(message: Optional[str] = None) -> str:
    return build_say_response(message or DEFAULT_APOLOGY)


def build_dial_response(phone_number: str, timeout: int = 30, announcement: Optional[str] = None) -> str:
    """Forward the call to a staff number."""
    response = VoiceResponse()
    if announcement:
        response.say(announcement, voice=DEFAULT_VOICE)
    dial = Dial(timeout=timeout)
    dial.number(phone_number)
    response.append(dial)
    response.say("The call could not be completed. Please try again later.", voice=DEFAULT_VOICE)
    response.hangup()
    return str(response)
