import logging
from typing import Dict, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from calltrack.core.config import Settings
from calltrack.errors import PlacementError
from calltrack.services.store import CallStore
from calltrack.services.twilio_client import TwilioGateway


logger = logging.getLogger(__name__)


class CallPlacer:
    mode = "base"

    async def request_call(self, phone_number: str) -> str:
        raise NotImplementedError

    async def place(self, db: Session, phone_number: str) -> str:
        provider_call_id = await self.request_call(phone_number)
        CallStore(db).create(phone_number, provider_call_id)
        logger.info("%s call to %s placed as %s", self.mode, phone_number, provider_call_id)
        return provider_call_id


class PhoneCallPlacer(CallPlacer):
    mode = "phone"

    def __init__(self, settings: Settings, gateway: Optional[TwilioGateway]):
        self.settings = settings
        self.gateway = gateway

    async def request_call(self, phone_number: str) -> str:
        if self.gateway is None or not self.settings.twilio_operator_number:
            raise PlacementError("Twilio not configured")
        try:
            return await run_in_threadpool(
                self.gateway.place_call, phone_number, self.settings.twilio_operator_number
            )
        except Exception as exc:
            logger.exception("Twilio refused call to %s", phone_number)
            raise PlacementError(str(exc)) from exc


def build_placers(settings: Settings, gateway: Optional[TwilioGateway]) -> Dict[str, CallPlacer]:
    return {
        PhoneCallPlacer.mode: PhoneCallPlacer(settings, gateway),
    }
