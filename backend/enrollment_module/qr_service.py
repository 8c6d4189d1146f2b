import base64
import logging
import unicodedata
from urllib.parse import quote

import requests

from .config import settings


logger = logging.getLogger(__name__)


class QrServiceError(Exception):
    pass


def remove_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("đ", "d").replace("Đ", "D")


def build_transfer_description(application_id: str, student_name: str) -> str:
    return f"{application_id} {remove_accents(student_name)}"


def build_qr_url(application_id: str, student_name: str) -> str:
    description = build_transfer_description(application_id, student_name)
    return (
        f"{settings.qr_base_url}/{settings.qr_bank_bin}-{settings.qr_account_no}-compact.png"
        f"?amount={settings.qr_amount}"
        f"&addInfo={quote(description, safe='')}"
        f"&accountName={quote(settings.qr_account_name, safe='')}"
    )


def fetch_qr_data_url(application_id: str, student_name: str) -> str:
    url = build_qr_url(application_id, student_name)
    try:
        response = requests.get(url, timeout=settings.http_timeout_seconds)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.error(f"QR image fetch failed for {application_id}: {exc}")
        raise QrServiceError("Could not generate payment QR code") from exc

    encoded = base64.b64encode(response.content).decode("ascii")
    return f"data:image/png;base64,{encoded}"
