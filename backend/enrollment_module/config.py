import os
from dataclasses import dataclass

from dotenv import load_dotenv


BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(dotenv_path=os.path.join(BACKEND_DIR, ".env"))


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv(
        "ENROLLMENT_DATABASE_URL", f"sqlite:///{os.path.join(BACKEND_DIR, 'enrollment.db')}"
    )
    jwt_secret: str = os.getenv("ENROLLMENT_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("ENROLLMENT_JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("ENROLLMENT_JWT_EXP_MINUTES", "60"))
    otp_exp_minutes: int = int(os.getenv("ENROLLMENT_OTP_EXP_MINUTES", "5"))
    otp_length: int = int(os.getenv("ENROLLMENT_OTP_LENGTH", "6"))
    allow_otp_console_fallback: bool = os.getenv("ALLOW_OTP_CONSOLE_FALLBACK", "true").lower() == "true"
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv("TWILIO_PHONE_NUMBER", "")
    upload_dir: str = os.getenv("ENROLLMENT_UPLOAD_DIR", os.path.join(BACKEND_DIR, "uploads"))
    admin_email: str = os.getenv("ADMIN_LOGIN_EMAIL", "admin@school.local")
    admin_password: str = os.getenv("ADMIN_LOGIN_PASSWORD", "ChangeMe@123")
    school_name: str = os.getenv("SCHOOL_NAME", "TRƯỜNG TIỂU HỌC NGUYỄN HUỆ")
    application_id_prefix: str = os.getenv("APPLICATION_ID_PREFIX", "NH25")
    default_class_size: int = int(os.getenv("DEFAULT_CLASS_SIZE", "35"))
    qr_base_url: str = os.getenv("QR_BASE_URL", "https://img.vietqr.io/image")
    qr_bank_bin: str = os.getenv("QR_BANK_BIN", "970405")
    qr_account_no: str = os.getenv("QR_ACCOUNT_NO", "5304205050813")
    qr_account_name: str = os.getenv("QR_ACCOUNT_NAME", "HUA VAN THIEN")
    qr_amount: int = int(os.getenv("QR_AMOUNT", "200000"))
    http_timeout_seconds: int = int(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
    cors_origins: tuple[str, ...] = _split_csv(os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"))

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


settings = Settings()
