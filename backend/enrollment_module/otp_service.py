import logging
import secrets
from datetime import datetime, timedelta, timezone

import requests

from .config import settings


logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class OtpDispatchError(Exception):
    pass


def generate_otp(length: int | None = None) -> str:
    alphabet = "0123456789"
    return "".join(secrets.choice(alphabet) for _ in range(length or settings.otp_length))


def otp_expiration() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=settings.otp_exp_minutes)


def normalize_phone(phone_number: str) -> str:
    """Local numbers (leading 0) are rewritten to the +84 country prefix for SMS."""
    phone_number = phone_number.strip()
    if phone_number.startswith("0"):
        return "+84" + phone_number[1:]
    return phone_number


def send_otp_sms(*, phone_number: str, otp: str) -> None:
    if not settings.sms_configured:
        raise OtpDispatchError("SMS gateway is not configured")

    try:
        response = requests.post(
            TWILIO_MESSAGES_URL.format(sid=settings.twilio_account_sid),
            data={
                "Body": f"Mã xác thực: {otp}",
                "From": settings.twilio_phone_number,
                "To": normalize_phone(phone_number),
            },
            auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            timeout=settings.http_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise OtpDispatchError(f"Failed to reach SMS gateway: {exc}") from exc

    if response.status_code >= 400:
        logger.error(f"SMS gateway rejected OTP for {phone_number}: {response.status_code} {response.text}")
        raise OtpDispatchError(f"SMS gateway returned {response.status_code}")
