import hashlib
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from glucosentry.core.settings import NightscoutConfig
from glucosentry.models.records import Calibration, DeviceStatus, GlucoseReading, InboundPayload, MeterReading, Treatment
from glucosentry.utils.times import now_ms
from glucosentry.utils.timezone import iso_from_ms

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_COUNT = 600
DEFAULT_TREATMENT_COUNT = 500
DEFAULT_DEVICESTATUS_COUNT = 20


class NightscoutError(Exception):
    """Raised when Nightscout interaction fails."""


def _is_jwt(token: str) -> bool:
    return len(token) > 20 and token.count(".") >= 2


class NightscoutClient:
    """Read side of the Nightscout REST API, producing payloads for a RecordStore."""

    def __init__(
        self,
        base_url: str,
        api_secret: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: int = 10,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_secret = api_secret
        self.token = token
        self.timeout_seconds = timeout_seconds

        headers = self._auth_headers()
        headers["Accept"] = "application/json"

        params = {}
        # Access tokens (subject-hash) are only accepted as a query parameter
        if self.token and not _is_jwt(self.token):
            params["token"] = self.token

        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            headers=headers,
            params=params,
        )

    @classmethod
    def from_config(cls, config: NightscoutConfig, client: Optional[httpx.AsyncClient] = None) -> "NightscoutClient":
        if config.base_url is None:
            raise NightscoutError("Nightscout URL is not configured")
        return cls(
            base_url=str(config.base_url),
            api_secret=config.api_secret,
            token=config.token,
            timeout_seconds=config.timeout_seconds,
            client=client,
        )

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.token and _is_jwt(self.token):
            headers["Authorization"] = f"Bearer {self.token}"
        if self.api_secret:
            headers["API-SECRET"] = hashlib.sha1(self.api_secret.encode("utf-8")).hexdigest()
        return headers

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.error("Nightscout request failed", extra={"path": path, "error": str(exc)})
            raise NightscoutError(f"Request to {path} failed: {exc}") from exc
        return await self._handle_response(response)

    async def _handle_response(self, response: httpx.Response) -> Any:
        try:
            response.raise_for_status()
            if not response.content.strip():
                # Nightscout sometimes answers an empty body instead of []
                return []
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Nightscout API error", extra={"status_code": exc.response.status_code, "body": exc.response.text})
            raise NightscoutError(f"Nightscout returned status {exc.response.status_code}") from exc
        except ValueError as exc:
            preview = response.text[:200]
            logger.error("Invalid JSON from Nightscout", extra={"body": preview})
            raise NightscoutError(f"Nightscout returned invalid JSON (Body: {preview!r})") from exc

    @staticmethod
    def _validate_all(model: Any, items: Any) -> list[Any]:
        if not isinstance(items, list):
            logger.warning("Expected a list from Nightscout", extra={"type": type(items).__name__})
            return []
        valid = []
        for item in items:
            try:
                valid.append(model.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping malformed Nightscout document", extra={"model": model.__name__, "error": str(exc)})
        return valid

    async def get_entries(
        self, since: Optional[int] = None, count: int = DEFAULT_ENTRY_COUNT
    ) -> tuple[list[GlucoseReading], list[MeterReading], list[Calibration]]:
        """Entries split by ``type`` into sensor readings, meter readings and calibrations."""
        params: dict[str, Any] = {"count": count}
        if since is not None:
            params["find[date][$gt]"] = since
        data = await self._get("/api/v1/entries.json", params)
        if not isinstance(data, list):
            return [], [], []

        sgvs = self._validate_all(GlucoseReading, [d for d in data if isinstance(d, dict) and d.get("type", "sgv") == "sgv"])
        mbgs = self._validate_all(MeterReading, [d for d in data if isinstance(d, dict) and d.get("type") == "mbg"])
        cals = self._validate_all(Calibration, [d for d in data if isinstance(d, dict) and d.get("type") == "cal"])
        return sgvs, mbgs, cals

    async def get_treatments(self, since: Optional[int] = None, count: int = DEFAULT_TREATMENT_COUNT) -> list[Treatment]:
        params: dict[str, Any] = {"count": count}
        if since is not None:
            params["find[created_at][$gt]"] = iso_from_ms(since)
        return self._validate_all(Treatment, await self._get("/api/v1/treatments.json", params))

    async def get_devicestatus(self, count: int = DEFAULT_DEVICESTATUS_COUNT) -> list[DeviceStatus]:
        return self._validate_all(DeviceStatus, await self._get("/api/v1/devicestatus.json", {"count": count}))

    async def get_profiles(self) -> list[dict[str, Any]]:
        data = await self._get("/api/v1/profile.json")
        if isinstance(data, dict):
            data = [data]
        return [d for d in data if isinstance(d, dict)] if isinstance(data, list) else []

    async def fetch_payload(self, since: Optional[int] = None) -> InboundPayload:
        sgvs, mbgs, cals = await self.get_entries(since)
        treatments = await self.get_treatments(since)
        devicestatus = await self.get_devicestatus()
        profiles = await self.get_profiles()
        logger.info(
            "Fetched Nightscout payload",
            extra={"since": since, "sgvs": len(sgvs), "treatments": len(treatments), "profiles": len(profiles)},
        )
        return InboundPayload(
            delta=since is not None,
            sgvs=sgvs,
            mbgs=mbgs,
            cals=cals,
            treatments=treatments,
            devicestatus=devicestatus,
            profiles=profiles,
            last_updated=now_ms(),
        )

    async def aclose(self) -> None:
        await self.client.aclose()
