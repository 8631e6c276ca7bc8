"""Twilio REST call control (hang up, transfer)."""
import logging
from typing import Optional
import httpx

from app.core.config import settings
from app.services.telephony.twiml import hangup_twiml, transfer_twiml

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioCallControl:
    """Updates live calls through the Twilio REST API."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.http_client = http_client or httpx.AsyncClient(
            auth=(self.account_sid, self.auth_token),
            timeout=30.0,
        )

    def _call_url(self, call_sid: str) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Calls/{call_sid}.json"

    async def hangup(self, call_sid: str, message: Optional[str] = None) -> bool:
        """End an active call, saying the message first when one is given."""
        data = {"Twiml": hangup_twiml(message)} if message else {"Status": "completed"}
        try:
            response = await self.http_client.post(self._call_url(call_sid), data=data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[TWILIO] Failed to end call: {e} - CallSid: {call_sid}")
            return False
        logger.info(f"[TWILIO] Call ended - CallSid: {call_sid}")
        return True

    async def transfer(self, call_sid: str, to_number: Optional[str] = None) -> bool:
        """Redirect the live call to a staff number."""
        to_number = to_number or settings.transfer_number
        if not to_number:
            logger.warning(f"[TWILIO] TRANSFER_NUMBER not configured, cannot transfer - CallSid: {call_sid}")
            return False
        try:
            response = await self.http_client.post(
                self._call_url(call_sid),
                data={"Twiml": transfer_twiml(None, to_number)},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[TWILIO] Failed to transfer call: {e} - CallSid: {call_sid}")
            return False
        logger.info(f"[TWILIO] Call transferred - CallSid: {call_sid}")
        return True

    async def close(self) -> None:
        await self.http_client.aclose()
