import asyncio
import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

# Rate limits and server errors are retried with exponential backoff
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class IntakeQError(Exception):
    """Raised when the IntakeQ API rejects a request or cannot be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.attempts = 1

    @property
    def retryable(self) -> bool:
        if self.status_code is None or self.status_code in RETRYABLE_STATUS_CODES:
            return True
        # Freshly created clients take a moment to become visible to the appointments API
        return self.status_code == 400 and "client not found" in str(self).lower()


def normalize_client_id(raw: Any) -> Optional[str]:
    """
    Normalize IntakeQ client ids stored in different shapes.

    Accepts 98, "98", {"Id": "98"}, {"ClientId": 98} and the JSON string '{"Id":"98"}'.
    Returns None when no numeric id can be extracted.
    """
    if raw is None:
        return None
    if isinstance(raw, dict):
        raw = raw.get("Id") or raw.get("ClientId") or raw.get("id")
        return normalize_client_id(raw)
    if isinstance(raw, int):
        return str(raw)
    value = str(raw).strip().strip('"')
    if value.startswith("{"):
        try:
            return normalize_client_id(json.loads(value))
        except ValueError:
            return None
    return value if value.isdigit() else None


def round_to_five_minutes(value: datetime) -> datetime:
    """Round to the nearest 5 minutes and zero seconds, as IntakeQ expects"""
    base = value.replace(second=0, microsecond=0)
    remainder = base.minute % 5
    if remainder >= 3:
        return base + timedelta(minutes=5 - remainder)
    return base - timedelta(minutes=remainder)


def to_epoch_ms(value: datetime) -> int:
    """Epoch milliseconds; naive datetimes are UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class IntakeQService:
    """Service for interacting with the IntakeQ / PracticeQ API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.INTAKEQ_API_KEY
        self.base_url = (base_url or config.INTAKEQ_BASE_URL).rstrip("/")
        self.max_retries = max(1, max_retries or config.INTAKEQ_MAX_RETRIES)
        self.backoff_seconds = backoff_seconds
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Send one API call, retrying transient failures"""
        if not self.is_configured:
            raise IntakeQError("IntakeQ API key not configured")

        headers = {"X-Auth-Key": self.api_key, "Content-Type": "application/json"}
        last_error: Optional[IntakeQError] = None

        async with httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=30.0, transport=self.transport
        ) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(method, path, json=payload, params=params)
                except httpx.HTTPError as e:
                    last_error = IntakeQError(f"IntakeQ request failed: {e}")
                else:
                    if response.status_code < 400:
                        if not response.content:
                            return None
                        try:
                            return response.json()
                        except ValueError:
                            return response.text
                    last_error = IntakeQError(
                        f"IntakeQ {method} {path} failed ({response.status_code}): {response.text[:300]}",
                        status_code=response.status_code,
                        body=response.text,
                    )

                if not last_error.retryable or attempt == self.max_retries:
                    break
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"⚠️ IntakeQ {method} {path} attempt {attempt}/{self.max_retries} failed "
                    f"({last_error.status_code}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        last_error.attempts = attempt
        logger.error(f"❌ {last_error}")
        raise last_error

    async def create_client(self, client_data: dict) -> str:
        """Create a client and return its normalized id"""
        response = await self._request("POST", "/clients", payload=client_data)
        client_id = normalize_client_id(response)
        if not client_id:
            raise IntakeQError(f"IntakeQ returned no usable client id: {response!r}")
        logger.info(f"✅ IntakeQ client created: {client_id}")
        return client_id

    async def create_appointment(
        self,
        client_id: str,
        practitioner_id: str,
        service_id: str,
        start_utc: datetime,
        location_id: Optional[str] = None,
        status: str = "Confirmed",
        send_email_notification: bool = True,
    ) -> str:
        """Create an appointment and return its IntakeQ id"""
        normalized_client = normalize_client_id(client_id)
        if not normalized_client:
            raise IntakeQError(f"Invalid IntakeQ client id: {client_id!r}")

        payload = {
            "PractitionerId": practitioner_id,
            "ClientId": normalized_client,
            "ServiceId": service_id,
            "LocationId": location_id or config.INTAKEQ_LOCATION_ID,
            "Status": status,
            "UtcDateTime": to_epoch_ms(round_to_five_minutes(start_utc)),
            "SendClientEmailNotification": send_email_notification,
            "ReminderType": "Email",
        }
        response = await self._request("POST", "/appointments", payload=payload)
        appointment_id = (response or {}).get("Id") if isinstance(response, dict) else None
        if not appointment_id:
            raise IntakeQError("IntakeQ returned no appointment id", body=response)
        logger.info(f"✅ IntakeQ appointment created: {appointment_id}")
        return str(appointment_id)

    async def get_appointment(self, appointment_id: str) -> dict:
        return await self._request("GET", f"/appointments/{appointment_id}")

    async def list_appointments(
        self,
        start_date: date,
        end_date: date,
        practitioner_id: Optional[str] = None,
        client: Optional[str] = None,
    ) -> list[dict]:
        """Appointments between two dates; IntakeQ has no practitioner filter so we filter here"""
        params = {"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}
        if client:
            params["client"] = client
        appointments = await self._request("GET", "/appointments", params=params) or []
        if practitioner_id:
            appointments = [a for a in appointments if a.get("PractitionerId") == practitioner_id]
        return appointments

    async def reschedule_appointment(
        self, appointment_id: str, start_utc: datetime, end_utc: datetime
    ) -> None:
        start = round_to_five_minutes(start_utc)
        end = round_to_five_minutes(end_utc)
        payload = {
            "Id": appointment_id,
            "StartDate": to_epoch_ms(start),
            "EndDate": to_epoch_ms(end),
            "StartDateIso": start.replace(tzinfo=timezone.utc).isoformat(),
            "EndDateIso": end.replace(tzinfo=timezone.utc).isoformat(),
        }
        await self._request("PUT", f"/appointments/{appointment_id}", payload=payload)
        logger.info(f"✅ IntakeQ appointment {appointment_id} rescheduled to {start.isoformat()}")

    async def update_appointment_status(self, appointment_id: str, status: str) -> None:
        """status is Confirmed, Cancelled or NoShow"""
        await self._request("PUT", f"/appointments/{appointment_id}", payload={"Status": status})
        logger.info(f"✅ IntakeQ appointment {appointment_id} status set to {status}")


intakeq_service = IntakeQService()
