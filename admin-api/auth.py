"""
Vendor OTP login.

  1. POST /api/auth/vendor/login       mobile -> 6-digit code sent by SMS
  2. POST /api/auth/vendor/verify-otp  mobile + code -> JWT bearer token
  3. POST /api/auth/vendor/resend-otp  mobile -> fresh code

Codes live in an OtpStore owned by the app (app.state.otp_store), hashed
with bcrypt. Expiry is checked when a code is verified; nothing sweeps the
store.
"""

import os
import secrets
import threading
import time
import logging
from typing import Callable, Dict, Optional, Tuple

import bcrypt as _bcrypt
import requests
from fastapi import APIRouter, Depends, HTTPException, Request, status

from models import OtpLoginRequest, OtpVerifyRequest, TokenResponse
from middleware import create_token

logger = logging.getLogger("ev-admin.auth")

router = APIRouter(prefix="/api/auth/vendor", tags=["auth"])

OTP_EXPIRY_SECONDS = int(os.environ.get("EV_OTP_EXPIRY_SECONDS", "300"))

SMS_GATEWAY_URL = os.environ.get("SMS_GATEWAY_URL", "")
SMS_GATEWAY_API_KEY = os.environ.get("SMS_GATEWAY_API_KEY", "")


def _get_connection():
    from admin_api import get_connection
    return get_connection()


# ---------------------------------------------------------------------------
# OTP store
# ---------------------------------------------------------------------------

class OtpError(Exception):
    """Verification failed; the message is safe to show the caller."""


class OtpStore:
    """Mobile number -> (bcrypt hash of the code, expiry timestamp)."""

    def __init__(self, ttl_seconds: int = OTP_EXPIRY_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._codes: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def issue(self, mobile: str) -> str:
        """Generate a code for ``mobile``, replacing any earlier one."""
        code = str(secrets.randbelow(900000) + 100000)
        hashed = _bcrypt.hashpw(code.encode("utf-8"), _bcrypt.gensalt())
        with self._lock:
            self._codes[mobile] = (hashed, self._clock() + self.ttl_seconds)
        return code

    def verify(self, mobile: str, code: str) -> None:
        """Consume the code for ``mobile``; raises OtpError on any failure.

        An expired code is dropped. A wrong code is kept so the user can retry
        until it expires.
        """
        with self._lock:
            record = self._codes.get(mobile)
            if record is None:
                raise OtpError("OTP not found or expired")
            hashed, expires_at = record
            if self._clock() > expires_at:
                del self._codes[mobile]
                raise OtpError("OTP expired")
            if not _bcrypt.checkpw(str(code).strip().encode("utf-8"), hashed):
                raise OtpError("Invalid OTP")
            del self._codes[mobile]

    def __contains__(self, mobile: str) -> bool:
        with self._lock:
            return mobile in self._codes


def get_otp_store(request: Request) -> OtpStore:
    return request.app.state.otp_store


# ---------------------------------------------------------------------------
# SMS delivery
# ---------------------------------------------------------------------------

def send_otp_sms(mobile: str, code: str) -> bool:
    """Send the code through the SMS gateway. Returns False if not delivered."""
    if not SMS_GATEWAY_URL:
        logger.warning("SMS_GATEWAY_URL not configured, OTP for %s not sent", mobile)
        logger.debug("OTP for %s: %s", mobile, code)
        return False

    headers = {}
    if SMS_GATEWAY_API_KEY:
        headers["Authorization"] = f"Bearer {SMS_GATEWAY_API_KEY}"

    try:
        resp = requests.post(
            SMS_GATEWAY_URL,
            json={"mobile": mobile, "message": f"Your EVJoints login OTP is {code}"},
            headers=headers,
            timeout=5,
        )
        if resp.status_code >= 400:
            logger.warning("SMS gateway returned %d for %s", resp.status_code, mobile)
            return False
        return True
    except requests.RequestException as e:
        logger.error("SMS gateway request failed: %s", e)
        return False


# ---------------------------------------------------------------------------
# Vendor lookup
# ---------------------------------------------------------------------------

def find_vendor(mobile: str) -> Optional[dict]:
    with _get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT id, name, email, mobile, pan, gst_no FROM vendor WHERE mobile = %s LIMIT 1",
            (mobile,),
        )
        row = cursor.fetchone()
    if not row:
        return None
    return dict(zip(("id", "name", "email", "mobile", "pan", "gst_no"), row))


def _require_mobile(mobile: Optional[str]) -> str:
    mobile = (mobile or "").strip()
    if not mobile:
        raise HTTPException(status_code=400, detail="Mobile number is required")
    return mobile


def _require_vendor(mobile: str) -> dict:
    try:
        vendor = find_vendor(mobile)
    except Exception as e:
        logger.error("Vendor lookup failed for %s: %s", mobile, e)
        raise HTTPException(status_code=500, detail="Internal server error")
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/login")
def vendor_login(req: OtpLoginRequest, store: OtpStore = Depends(get_otp_store)):
    """Send a login OTP to a registered vendor."""
    mobile = _require_mobile(req.mobile)
    vendor = _require_vendor(mobile)

    send_otp_sms(mobile, store.issue(mobile))
    logger.info("OTP issued for vendor %s", vendor["id"])

    return {
        "message": "OTP sent successfully",
        "vendor": {
            "name": vendor["name"] or "-",
            "email": vendor["email"] or "-",
            "mobile": vendor["mobile"],
            "pan": vendor["pan"] or "-",
            "gstNo": vendor["gst_no"] or "-",
        },
    }


@router.post("/verify-otp", response_model=TokenResponse)
def verify_otp(req: OtpVerifyRequest, store: OtpStore = Depends(get_otp_store)):
    """Exchange a valid OTP for a bearer token."""
    mobile = (req.mobile or "").strip()
    code = (req.otp or "").strip()
    if not mobile or not code:
        raise HTTPException(status_code=400, detail="Mobile number and OTP are required")

    try:
        store.verify(mobile, code)
    except OtpError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    vendor = _require_vendor(mobile)
    token, expires_in = create_token(str(vendor["id"]), name=vendor["name"] or "", mobile=mobile)
    logger.info("Vendor %s logged in", vendor["id"])
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.post("/resend-otp")
def resend_otp(req: OtpLoginRequest, store: OtpStore = Depends(get_otp_store)):
    mobile = _require_mobile(req.mobile)
    _require_vendor(mobile)

    send_otp_sms(mobile, store.issue(mobile))
    return {"message": "OTP resent successfully"}
