"""
Messaging gateway client (WAHA WhatsApp HTTP API).

Every organization brings its own gateway: the base URL and API key live in
the org-scoped variable store. ``send_message`` never raises; expected
failures come back as a result dict:

    {"success": True, "error": None}
    {"success": False, "error": "..."}

The administrative helpers (config and session status) do raise, since they
are called interactively by the settings screens.
"""

import logging
import re
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.config import get_settings
from clinic_notify.exceptions import GatewayError, GatewayNotConfiguredError
from clinic_notify.models.organization_variable import OrganizationVariableKey
from clinic_notify.schemas.gateway import (
    GatewayConfigResponse,
    GatewayConfigUpdate,
    GatewaySessionStatus,
)
from clinic_notify.services import organization_variables
from clinic_notify.utils.http_client import get_http_client

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "not configured"

_NON_DIGITS = re.compile(r"\D")

_AUTH_KEYS = [OrganizationVariableKey.WAHA_API_URL, OrganizationVariableKey.WAHA_API_KEY]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_chat_id(phone_number: str) -> str:
    """Convert a phone number to the gateway chat id: digits + fixed suffix.

    "+961 81-261-368" -> "96181261368@c.us"
    """
    digits = _NON_DIGITS.sub("", phone_number or "")
    return f"{digits}{get_settings().GATEWAY_CHAT_ID_SUFFIX}"


def normalize_base_url(url: str) -> str:
    return url.strip().rstrip("/")


def _failure(error: str) -> dict:
    return {"success": False, "error": error}


async def _get_gateway_auth(db: AsyncSession, org_id: UUID) -> tuple[str | None, str | None]:
    values = await organization_variables.get_many(db, org_id, _AUTH_KEYS)
    raw_url = values[OrganizationVariableKey.WAHA_API_URL]
    api_key = values[OrganizationVariableKey.WAHA_API_KEY]
    return (normalize_base_url(raw_url) if raw_url else None, api_key)


# ---------------------------------------------------------------------------
# 1. send_message
# ---------------------------------------------------------------------------

async def send_message(
    db: AsyncSession,
    org_id: UUID,
    phone_number: str,
    text: str,
) -> dict:
    """
    Send a text message to a patient through the organization's gateway.

    Returns ``{"success": False, "error": "not configured"}`` without any
    network I/O when the organization has no URL or API key. Timeouts,
    transport errors and non-2xx responses are all reported as failures.
    """
    try:
        base_url, api_key = await _get_gateway_auth(db, org_id)
    except Exception as e:
        logger.exception("send_message: could not load gateway config for org %s", org_id)
        return _failure(f"Gateway config lookup failed: {e}")

    if not base_url or not api_key:
        logger.warning("send_message: gateway not configured for org %s", org_id)
        return _failure(NOT_CONFIGURED_ERROR)

    chat_id = format_chat_id(phone_number)
    if chat_id == get_settings().GATEWAY_CHAT_ID_SUFFIX:
        logger.error("send_message: no digits in phone number for org %s", org_id)
        return _failure("Invalid phone number")

    settings = get_settings()
    payload = {
        "chatId": chat_id,
        "text": text,
        "session": settings.GATEWAY_SESSION,
        "reply_to": None,
        "linkPreview": True,
        "linkPreviewHighQuality": False,
    }
    headers = {
        "accept": "application/json",
        "X-Api-Key": api_key,
    }

    client = get_http_client()
    try:
        response = await client.post(
            f"{base_url}/api/sendText",
            json=payload,
            headers=headers,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    except httpx.TimeoutException:
        logger.error(
            "send_message: gateway timed out after %ss for org %s",
            settings.GATEWAY_TIMEOUT_SECONDS, org_id,
        )
        return _failure(f"Gateway timeout after {settings.GATEWAY_TIMEOUT_SECONDS:g}s")
    except httpx.HTTPError as e:
        logger.error("send_message: transport error for org %s: %s", org_id, e)
        return _failure(str(e) or type(e).__name__)
    except Exception as e:
        logger.exception("send_message: unexpected error for org %s", org_id)
        return _failure(str(e) or type(e).__name__)

    if not response.is_success:
        error = f"WAHA API error: {response.status_code} - {response.text}"
        logger.error("send_message: %s (org %s)", error, org_id)
        return _failure(error)

    logger.info("send_message: delivered to %s for org %s", chat_id, org_id)
    return {"success": True, "error": None}


# ---------------------------------------------------------------------------
# 2. Gateway configuration
# ---------------------------------------------------------------------------

async def get_gateway_config(db: AsyncSession, org_id: UUID) -> GatewayConfigResponse:
    """Return the stored URL and whether a key exists. The key is never returned."""
    base_url, api_key = await _get_gateway_auth(db, org_id)
    return GatewayConfigResponse(api_url=base_url, has_api_key=bool(api_key))


async def update_gateway_config(
    db: AsyncSession,
    org_id: UUID,
    update: GatewayConfigUpdate,
    updated_by: UUID | None = None,
) -> GatewayConfigResponse:
    """Partially update the gateway URL and/or key."""
    if update.api_url is not None:
        await organization_variables.set_value(
            db, org_id, OrganizationVariableKey.WAHA_API_URL,
            normalize_base_url(update.api_url) or None, updated_by,
        )
    if update.api_key is not None:
        await organization_variables.set_value(
            db, org_id, OrganizationVariableKey.WAHA_API_KEY,
            update.api_key or None, updated_by,
        )
    return await get_gateway_config(db, org_id)


# ---------------------------------------------------------------------------
# 3. Session status
# ---------------------------------------------------------------------------

async def _list_sessions(base_url: str, api_key: str) -> list[dict]:
    client = get_http_client()
    response = await client.get(
        f"{base_url}/api/sessions",
        headers={"accept": "application/json", "X-Api-Key": api_key},
    )
    if not response.is_success:
        raise GatewayError(f"WAHA API error: {response.status_code} - {response.text}")

    sessions = response.json()
    if not isinstance(sessions, list):
        raise GatewayError("WAHA returned invalid sessions response")
    return sessions


async def _ensure_session(base_url: str, api_key: str) -> list[dict]:
    sessions = await _list_sessions(base_url, api_key)
    if sessions:
        return sessions

    client = get_http_client()
    response = await client.post(
        f"{base_url}/api/sessions",
        json={"name": get_settings().GATEWAY_SESSION, "start": True},
        headers={"accept": "application/json", "X-Api-Key": api_key},
    )
    if not response.is_success:
        raise GatewayError(
            f"WAHA create session error: {response.status_code} - {response.text}"
        )
    logger.info("get_session_status: created gateway session '%s'", get_settings().GATEWAY_SESSION)
    return await _list_sessions(base_url, api_key)


async def get_session_status(db: AsyncSession, org_id: UUID) -> GatewaySessionStatus:
    """
    Report the state of the organization's first gateway session, creating
    the default session when none exists.

    Raises GatewayNotConfiguredError if URL or key is missing and
    GatewayError if the gateway rejects a call.
    """
    base_url, api_key = await _get_gateway_auth(db, org_id)
    if not base_url or not api_key:
        raise GatewayNotConfiguredError(
            f"Messaging gateway is not configured for organization {org_id}"
        )

    sessions = await _ensure_session(base_url, api_key)
    if not sessions:
        raise GatewayError("WAHA returned no sessions after creation attempt")

    status = sessions[0].get("status")
    if not status:
        raise GatewayError("WAHA session status missing")

    return GatewaySessionStatus(
        status=status,
        is_connected=status == "WORKING",
        needs_qr_scan=status == "SCAN_QR_CODE",
    )
