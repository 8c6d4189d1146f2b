import enum
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"


class ApplicationStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    PAID_FEE = "paid_fee"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"
    ASSIGNED = "assigned"


class EnrollmentType(str, enum.Enum):
    GRADE_1 = "grade_1"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


class EnrollmentRoute(str, enum.Enum):
    IN_ROUTE = "in_route"
    OUT_OF_ROUTE = "out_of_route"


class InvalidTransitionError(Exception):
    def __init__(self, current: ApplicationStatus, target: ApplicationStatus):
        super().__init__(f"Cannot move application from {current.value} to {target.value}")
        self.current = current
        self.target = target


# REJECTED is terminal. ASSIGNED -> ASSIGNED is a manual move between classes.
ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.SUBMITTED: frozenset(
        {
            ApplicationStatus.REVIEWING,
            ApplicationStatus.PAID_FEE,
            ApplicationStatus.APPROVED,
            ApplicationStatus.REJECTED,
        }
    ),
    ApplicationStatus.PAID_FEE: frozenset(
        {ApplicationStatus.REVIEWING, ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.REVIEWING: frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}),
    ApplicationStatus.APPROVED: frozenset({ApplicationStatus.ASSIGNED}),
    ApplicationStatus.ASSIGNED: frozenset({ApplicationStatus.ASSIGNED}),
    ApplicationStatus.REJECTED: frozenset(),
}


def ensure_transition(current: ApplicationStatus, target: ApplicationStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


class User(Base):
    __tablename__ = "enrollment_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class SchoolClass(Base):
    __tablename__ = "enrollment_classes"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    max_size: Mapped[int] = mapped_column(Integer, nullable=False, default=35)


class Application(Base):
    __tablename__ = "enrollment_applications"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    student_dob: Mapped[date | None] = mapped_column(Date, nullable=True)
    student_gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    student_pid: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ethnicity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    place_of_birth: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hometown: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    enrollment_type: Mapped[EnrollmentType] = mapped_column(Enum(EnrollmentType), nullable=False)
    enrollment_route: Mapped[EnrollmentRoute] = mapped_column(Enum(EnrollmentRoute), nullable=False)
    is_priority: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus), default=ApplicationStatus.SUBMITTED, nullable=False, index=True
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    birth_cert_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    residence_proof_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    class_id: Mapped[str | None] = mapped_column(ForeignKey("enrollment_classes.id"), nullable=True, index=True)

    school_class: Mapped[SchoolClass | None] = relationship("SchoolClass")


class SiteContent(Base):
    __tablename__ = "enrollment_site_content"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    announcement_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    announcement_details: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    attachment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    admitted_list_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    admitted_list_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    guidelines: Mapped[list] = mapped_column(JSON, default=list, nullable=False)


class SiteSettings(Base):
    __tablename__ = "enrollment_site_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    school_name: Mapped[str] = mapped_column(Text, nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    banner_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class OtpCode(Base):
    __tablename__ = "enrollment_otp_codes"

    phone_number: Mapped[str] = mapped_column(String(20), primary_key=True)
    otp_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
