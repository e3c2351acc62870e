"""
Client for the certified stamping provider (PAC).

Wire protocol: POST JSON ``{"user", "apikey", "xml": base64(unsigned)}`` and
receive ``{"data": {"xml": base64(stamped)}}`` on success or an envelope with
``status``/``response`` set to ``"error"`` and a ``message`` on rejection.

Failures are classified for the caller:
- transport problems (timeout, refused connection, provider 5xx without an
  envelope) are retryable with the identical payload;
- provider rejections and unusable responses are terminal.
"""
from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime

import requests
from django.conf import settings
from django.utils import timezone
from lxml import etree

from cfdi.exceptions import ExternalServiceError
from cfdi.services.xml_builder import TFD_NS

logger = logging.getLogger(__name__)

INCOMPLETE_RESPONSE = "incomplete stamping response"


@dataclass(frozen=True)
class PacCredentials:
    user: str
    api_key: str

    @classmethod
    def for_business(cls, business) -> "PacCredentials":
        """Tenant credentials first, then the environment-provided fallback."""
        user = getattr(business, "pac_user", "") or getattr(settings, "PAC_USER", "")
        api_key = getattr(business, "pac_api_key", "") or getattr(settings, "PAC_API_KEY", "")
        return cls(user=user, api_key=api_key)

    def __repr__(self) -> str:  # keep the key out of logs and tracebacks
        return f"PacCredentials(user={self.user!r}, api_key='***')"


@dataclass(frozen=True)
class StampResult:
    stamped_xml: str
    fiscal_uuid: str
    stamped_at: datetime
    seal_cfd: str = ""
    seal_sat: str = ""
    sat_certificate_number: str = ""


def _parse_stamp_date(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if timezone.is_naive(parsed):
        # FechaTimbrado is local (issuer) time without offset.
        parsed = timezone.make_aware(parsed)
    return parsed


def extract_stamp(stamped_xml: str) -> StampResult:
    """
    Locate the TimbreFiscalDigital element and pull UUID and FechaTimbrado.

    Both values must be present and non-empty; anything less is an incomplete
    response and is never treated as success.
    """
    try:
        root = etree.fromstring(stamped_xml.encode("utf-8"))
    except etree.XMLSyntaxError as exc:
        raise ExternalServiceError("stamped document is not valid XML") from exc

    timbre = next(root.iter(f"{{{TFD_NS}}}TimbreFiscalDigital"), None)
    if timbre is None:
        raise ExternalServiceError(INCOMPLETE_RESPONSE, context={"reason": "missing TimbreFiscalDigital"})

    fiscal_uuid = (timbre.get("UUID") or "").strip()
    raw_date = (timbre.get("FechaTimbrado") or "").strip()
    if not fiscal_uuid or not raw_date:
        raise ExternalServiceError(
            INCOMPLETE_RESPONSE,
            context={"has_uuid": bool(fiscal_uuid), "has_stamp_date": bool(raw_date)},
        )
    try:
        stamped_at = _parse_stamp_date(raw_date)
    except ValueError as exc:
        raise ExternalServiceError(INCOMPLETE_RESPONSE, context={"reason": "invalid FechaTimbrado"}) from exc

    return StampResult(
        stamped_xml=stamped_xml,
        fiscal_uuid=fiscal_uuid.upper(),
        stamped_at=stamped_at,
        seal_cfd=timbre.get("SelloCFD") or "",
        seal_sat=timbre.get("SelloSAT") or "",
        sat_certificate_number=timbre.get("NoCertificadoSAT") or "",
    )


class PacClient:
    def __init__(self, *, url: str | None = None, timeout: int | None = None):
        self.url = url or getattr(settings, "PAC_URL", "")
        self.timeout = timeout if timeout is not None else getattr(settings, "PAC_TIMEOUT_SECONDS", 30)

    def stamp(self, unsigned_xml: str, credentials: PacCredentials) -> StampResult:
        if not credentials.user or not credentials.api_key:
            logger.error("PAC credentials are not configured")
            raise ExternalServiceError("PAC credentials are not configured on the server")

        payload = {
            "user": credentials.user,
            "apikey": credentials.api_key,
            "xml": base64.b64encode(unsigned_xml.encode("utf-8")).decode("ascii"),
        }

        logger.info("[PAC] Sending document for stamping (%d bytes)", len(unsigned_xml))
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            logger.warning("[PAC] Request timed out after %ss", self.timeout)
            raise ExternalServiceError(
                f"stamping service timed out after {self.timeout}s",
                retryable=True,
            ) from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("[PAC] Communication failure: %s", exc.__class__.__name__)
            raise ExternalServiceError(
                "could not reach the stamping service",
                retryable=True,
                context={"error": exc.__class__.__name__},
            ) from exc

        return self._handle_response(response)

    def _handle_response(self, response) -> StampResult:
        try:
            result = response.json()
        except ValueError as exc:
            if response.status_code >= 500:
                logger.warning("[PAC] Provider unavailable (HTTP %s)", response.status_code)
                raise ExternalServiceError(
                    f"stamping service unavailable (HTTP {response.status_code})",
                    retryable=True,
                ) from exc
            raise ExternalServiceError(
                "stamping service returned an unreadable response",
                context={"http_status": response.status_code},
            ) from exc

        if not isinstance(result, dict):
            raise ExternalServiceError("stamping service returned an unreadable response")

        if not response.ok or result.get("status") == "error" or result.get("response") == "error":
            provider_message = result.get("message") or "unknown PAC error"
            logger.warning("[PAC] Document rejected (HTTP %s): %s", response.status_code, provider_message)
            raise ExternalServiceError(
                str(provider_message),
                context={"http_status": response.status_code, "provider_code": result.get("code")},
            )

        data = result.get("data") or {}
        stamped_b64 = data.get("xml") if isinstance(data, dict) else None
        if not stamped_b64:
            logger.warning("[PAC] Success envelope without stamped document")
            raise ExternalServiceError(INCOMPLETE_RESPONSE, context={"reason": "missing data.xml"})

        try:
            stamped_xml = base64.b64decode(stamped_b64, validate=True).decode("utf-8")
        except (binascii.Error, ValueError) as exc:
            raise ExternalServiceError(INCOMPLETE_RESPONSE, context={"reason": "undecodable data.xml"}) from exc

        stamp = extract_stamp(stamped_xml)
        logger.info("[PAC] Document stamped with UUID %s", stamp.fiscal_uuid)
        return stamp
