"""
Pydantic models for the EVJoints Admin API.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Auth models
# ---------------------------------------------------------------------------

class OtpLoginRequest(BaseModel):
    mobile: Optional[str] = Field(None, description="Registered vendor mobile number")


class OtpVerifyRequest(BaseModel):
    mobile: Optional[str] = None
    otp: Optional[str] = None


class TokenResponse(BaseModel):
    message: str = "Login successful"
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class CurrentUser(BaseModel):
    """Decoded JWT payload representing the signed-in vendor."""
    user_id: str
    name: str = ""
    mobile: str = ""


# ---------------------------------------------------------------------------
# Station models
# ---------------------------------------------------------------------------

Numeric = Union[float, int, str]


class ConnectorInput(BaseModel):
    id: Optional[int] = None
    chargerTypeId: Optional[int] = None
    count: Optional[int] = None
    powerRating: Optional[Numeric] = None
    tariff: Optional[Numeric] = None
    operationalStatus: Optional[str] = "Active"


class StationPayload(BaseModel):
    stationName: Optional[str] = None
    stationType: Optional[str] = None
    usageType: Optional[str] = None
    latitude: Optional[Numeric] = None
    longitude: Optional[Numeric] = None
    contactNumber: Optional[Union[str, int]] = None
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    networkId: Optional[int] = None
    networkName: Optional[str] = None
    address: Optional[str] = None
    connectors: List[ConnectorInput] = []
    photos: List[str] = []


class StationActionRequest(StationPayload):
    action: Optional[str] = None
    reason: Optional[str] = None
    addedByType: Optional[str] = None
    networkStatus: Optional[Union[int, str]] = None


class MassUploadSummary(BaseModel):
    total: int
    successful: int
    failed: int


class MassUploadResult(BaseModel):
    message: str = "Mass upload completed"
    summary: MassUploadSummary
    successfulRows: List[Dict[str, Any]]
    failedRows: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Trip models
# ---------------------------------------------------------------------------

class TripStoryRequest(BaseModel):
    action: Optional[str] = None
    name: Optional[str] = None
    blogLink: Optional[str] = None
