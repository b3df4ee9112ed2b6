import time
from typing import Any, Dict, List, Optional

from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VoiceGrant
from twilio.rest import Client
from twilio.twiml.voice_response import Start, Stop, VoiceResponse

from calltrack.core.config import Settings
from calltrack.services.normalizer import parse_duration


def webhook_url(settings: Settings, path: str) -> str:
    return f"{settings.webhook_base_url.rstrip('/')}/api/webhooks/{path}"


def build_dial_twiml(settings: Settings, phone_number: str, greeting: str) -> str:
    """TwiML that transcribes both legs while dialing ``phone_number`` with a recording."""
    response = VoiceResponse()
    start = Start()
    start.transcription(
        status_callback_url=webhook_url(settings, "realtime-transcription"),
        transcription_engine="deepgram",
        speech_model="telephony",
        track="both_tracks",
        partial_results=False,
        language_code="en-US",
    )
    response.append(start)
    response.say(greeting)
    response.dial(
        phone_number,
        caller_id=settings.twilio_phone_number,
        record="record-from-answer-dual",
        recording_status_callback=webhook_url(settings, "recording"),
        recording_status_callback_event="completed",
        timeout=30,
    )
    stop = Stop()
    stop.transcription()
    response.append(stop)
    return str(response)


def build_error_twiml(message: str) -> str:
    response = VoiceResponse()
    response.say(message)
    response.hangup()
    return str(response)


class TwilioGateway:
    """Thin wrapper over the Twilio REST client.

    Every method is blocking; async callers run them in a worker thread.
    """

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.settings = settings
        self._client = client or Client(settings.twilio_account_sid, settings.twilio_auth_token)

    def webhook_url(self, path: str) -> str:
        return webhook_url(self.settings, path)

    def build_call_twiml(self, phone_number: str) -> str:
        return build_dial_twiml(self.settings, phone_number, "Connecting your call. Please wait.")

    def create_access_token(self, identity: Optional[str] = None) -> Dict[str, str]:
        """Voice SDK token for browser calling; outgoing calls only."""
        identity = identity or f"browser-user-{int(time.time() * 1000)}"
        token = AccessToken(
            self.settings.twilio_account_sid,
            self.settings.twilio_api_key_sid or self.settings.twilio_account_sid,
            self.settings.twilio_api_key_secret or self.settings.twilio_auth_token,
            identity=identity,
            ttl=self.settings.access_token_expire_minutes * 60,
        )
        token.add_grant(
            VoiceGrant(
                outgoing_application_sid=self.settings.twilio_twiml_app_sid,
                incoming_allow=False,
            )
        )
        return {"access_token": token.to_jwt(), "identity": identity}

    def place_call(self, phone_number: str, operator_number: str) -> str:
        call = self._client.calls.create(
            to=operator_number,
            from_=self.settings.twilio_phone_number,
            twiml=self.build_call_twiml(phone_number),
            status_callback=self.webhook_url("status"),
            status_callback_event=["initiated", "ringing", "answered", "completed"],
            status_callback_method="POST",
        )
        return call.sid

    def fetch_call(self, provider_call_id: str) -> Dict[str, Any]:
        call = self._client.calls(provider_call_id).fetch()
        return {
            "status": call.status,
            "duration_seconds": parse_duration(call.duration),
        }

    def list_recent_transcripts(self, limit: int = 50) -> List[Dict[str, Any]]:
        transcripts = self._client.intelligence.v2.transcripts.list(limit=limit)
        items = []
        for transcript in transcripts:
            channel = transcript.channel or {}
            media = channel.get("media_properties") or {}
            items.append(
                {
                    "transcript_id": transcript.sid,
                    "source_recording_id": media.get("source_sid"),
                    "status": transcript.status,
                }
            )
        return items

    def fetch_transcript(self, transcript_id: str) -> Dict[str, Any]:
        transcript = self._client.intelligence.v2.transcripts(transcript_id).fetch()
        text = None
        if transcript.status == "completed":
            sentences = self._client.intelligence.v2.transcripts(transcript_id).sentences.list()
            text = " ".join(
                sentence.transcript.strip() for sentence in sentences if sentence.transcript
            ).strip()
        return {"status": transcript.status, "text": text or None}


def build_gateway(settings: Settings) -> Optional[TwilioGateway]:
    if not settings.twilio_configured:
        return None
    return TwilioGateway(settings)
