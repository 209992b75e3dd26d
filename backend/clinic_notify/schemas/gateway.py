from typing import Literal

from pydantic import BaseModel

SessionStatus = Literal["STOPPED", "STARTING", "SCAN_QR_CODE", "WORKING", "FAILED"]


class GatewayConfigResponse(BaseModel):
    api_url: str | None = None
    has_api_key: bool = False


class GatewayConfigUpdate(BaseModel):
    # None leaves the stored value untouched
    api_url: str | None = None
    api_key: str | None = None


class GatewaySessionStatus(BaseModel):
    status: SessionStatus
    is_connected: bool
    needs_qr_scan: bool
