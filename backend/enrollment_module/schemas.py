from datetime import date, datetime

from pydantic import BaseModel, Field

from .models import ApplicationStatus, EnrollmentRoute, EnrollmentType, UserRole


class AdminLoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


class SendOtpRequest(BaseModel):
    phone_number: str = Field(min_length=8, max_length=20, pattern=r"^\+?[0-9]+$")


class SendOtpResponse(BaseModel):
    message: str
    dev_otp: str | None = None


class VerifyOtpRequest(BaseModel):
    phone_number: str = Field(min_length=8, max_length=20, pattern=r"^\+?[0-9]+$")
    otp: str = Field(min_length=4, max_length=10)


class UserOut(BaseModel):
    id: int
    email: str
    role: UserRole


class ApplicationOut(BaseModel):
    id: str
    student_name: str
    student_dob: date | None
    student_gender: str | None
    student_pid: str
    ethnicity: str
    place_of_birth: str
    hometown: str
    parent_name: str
    parent_phone: str
    address: str | None
    enrollment_type: EnrollmentType
    enrollment_route: EnrollmentRoute
    is_priority: bool
    status: ApplicationStatus
    submitted_at: datetime
    birth_cert_url: str | None
    residence_proof_url: str | None
    rejection_reason: str | None
    class_id: str | None


class ApplicationStatusOut(BaseModel):
    id: str
    student_name: str
    status: ApplicationStatus
    rejection_reason: str | None
    class_id: str | None
    class_name: str | None


class StatusChangeRequest(BaseModel):
    status: ApplicationStatus
    rejection_reason: str | None = Field(default=None, max_length=2000)


class ManualAssignRequest(BaseModel):
    class_id: str = Field(min_length=1, max_length=50)


class PlacementIn(BaseModel):
    id: str = Field(min_length=1, max_length=50)
    class_id: str = Field(min_length=1, max_length=50)
    status: ApplicationStatus = ApplicationStatus.ASSIGNED


class BulkUpdateRequest(BaseModel):
    updates: list[PlacementIn]


class PlacementOut(BaseModel):
    application_id: str
    class_id: str
    status: ApplicationStatus


class AutoAssignResponse(BaseModel):
    placements: list[PlacementOut]
    unplaced_ids: list[str]


class ClassCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    max_size: int | None = Field(default=None, ge=0, le=1000)


class ClassUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    max_size: int | None = Field(default=None, ge=0, le=1000)


class ClassOut(BaseModel):
    id: str
    name: str
    max_size: int
    occupancy: int


class AnnouncementDetail(BaseModel):
    label: str
    value: str


class Announcement(BaseModel):
    title: str
    details: list[AnnouncementDetail] = []
    attachment_url: str | None = None
    attachment_name: str | None = None
    admitted_list_url: str | None = None
    admitted_list_name: str | None = None


class Guideline(BaseModel):
    id: str
    text: str


class SiteContentOut(BaseModel):
    announcement: Announcement
    guidelines: list[Guideline]


class SiteSettingsOut(BaseModel):
    school_name: str
    logo_url: str | None
    banner_url: str | None


class SnapshotOut(BaseModel):
    applications: list[ApplicationOut]
    classes: list[ClassOut]
    announcement: Announcement
    guidelines: list[Guideline]
    settings: SiteSettingsOut


class QrCodeOut(BaseModel):
    qr_data_url: str
