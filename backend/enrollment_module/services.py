import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone

from fastapi import HTTPException, UploadFile, status
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .assignment import (
    AlreadyPlacedError,
    ApplicantSnapshot,
    ClassFullError,
    ClassSnapshot,
    Placement,
    UnknownClassError,
    check_capacity,
    count_occupancy,
    plan_placements,
    unplaced,
    validate_placements,
)
from .config import settings
from .models import (
    Application,
    ApplicationStatus,
    EnrollmentRoute,
    EnrollmentType,
    InvalidTransitionError,
    OtpCode,
    SchoolClass,
    SiteContent,
    SiteSettings,
    User,
    UserRole,
    ensure_transition,
)
from .otp_service import OtpDispatchError, generate_otp, otp_expiration, send_otp_sms
from .schemas import (
    Announcement,
    ApplicationOut,
    ApplicationStatusOut,
    ClassOut,
    Guideline,
    SiteContentOut,
    SiteSettingsOut,
    SnapshotOut,
)
from .security import hash_otp, hash_password, issue_admin_token, issue_parent_token, verify_otp_hash, verify_password
from .storage import UploadError, remove_upload, save_upload


logger = logging.getLogger(__name__)

# Placement writes (automatic, manual, bulk) are serialized so two runs never
# see the same free seat.
_assignment_lock = threading.Lock()

# Application ids are derived from the row count, so allocation and insert go together.
_submission_lock = threading.Lock()

_guidelines_adapter = TypeAdapter(list[Guideline])


@dataclass
class NewApplication:
    student_name: str
    student_dob: date | None
    student_gender: str | None
    student_pid: str | None
    ethnicity: str | None
    place_of_birth: str | None
    hometown: str | None
    parent_name: str
    parent_phone: str
    address: str | None
    enrollment_type: EnrollmentType
    enrollment_route: EnrollmentRoute
    is_priority: bool = False


@dataclass
class AutoAssignResult:
    placements: list[Placement]
    unplaced_ids: list[str]


# ---------------------------------------------------------------- serializers

def application_out(app: Application) -> ApplicationOut:
    return ApplicationOut(
        id=app.id,
        student_name=app.student_name,
        student_dob=app.student_dob,
        student_gender=app.student_gender,
        student_pid=app.student_pid or "",
        ethnicity=app.ethnicity or "",
        place_of_birth=app.place_of_birth or "",
        hometown=app.hometown or "",
        parent_name=app.parent_name,
        parent_phone=app.parent_phone,
        address=app.address,
        enrollment_type=app.enrollment_type,
        enrollment_route=app.enrollment_route,
        is_priority=app.is_priority,
        status=app.status,
        submitted_at=app.submitted_at,
        birth_cert_url=app.birth_cert_url,
        residence_proof_url=app.residence_proof_url,
        rejection_reason=app.rejection_reason,
        class_id=app.class_id,
    )


def application_status_out(app: Application) -> ApplicationStatusOut:
    return ApplicationStatusOut(
        id=app.id,
        student_name=app.student_name,
        status=app.status,
        rejection_reason=app.rejection_reason,
        class_id=app.class_id,
        class_name=app.school_class.name if app.school_class else None,
    )


def _applicant_snapshot(app: Application) -> ApplicantSnapshot:
    return ApplicantSnapshot(
        id=app.id,
        is_priority=app.is_priority,
        enrollment_route=app.enrollment_route,
        status=app.status,
        class_id=app.class_id,
    )


def _class_snapshot(school_class: SchoolClass) -> ClassSnapshot:
    return ClassSnapshot(id=school_class.id, name=school_class.name, max_size=school_class.max_size)


# ---------------------------------------------------------------- admin auth

def login_admin(db: Session, *, email: str, password: str) -> tuple[str, UserRole]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return issue_admin_token(user.email, user.role.value), user.role


def seed_default_admin(db: Session) -> None:
    email = settings.admin_email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        return
    db.add(
        User(
            email=email,
            role=UserRole.SUPER_ADMIN,
            password_hash=hash_password(settings.admin_password),
            is_active=True,
        )
    )
    db.commit()
    logger.info(f"Seeded default administrator {email}")


# ---------------------------------------------------------------- parent OTP

def request_otp(db: Session, *, phone_number: str) -> str | None:
    """Issue a login code. Returns the code itself only when it was not sent by SMS."""
    phone_number = phone_number.strip()
    raw_otp = generate_otp()

    record = db.get(OtpCode, phone_number)
    if record is None:
        record = OtpCode(phone_number=phone_number, otp_hash=hash_otp(raw_otp), expires_at=otp_expiration())
        db.add(record)
    else:
        record.otp_hash = hash_otp(raw_otp)
        record.expires_at = otp_expiration()
    db.commit()

    if not settings.sms_configured:
        if not settings.allow_otp_console_fallback:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="SMS gateway is not configured")
        logger.info(f"[DEV MODE] OTP for {phone_number}: {raw_otp}")
        return raw_otp

    try:
        send_otp_sms(phone_number=phone_number, otp=raw_otp)
    except OtpDispatchError as exc:
        if not settings.allow_otp_console_fallback:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
        logger.warning(f"[FALLBACK] SMS failed ({exc}). OTP for {phone_number}: {raw_otp}")
        return raw_otp
    return None


def verify_parent_otp(db: Session, *, phone_number: str, otp: str) -> str:
    phone_number = phone_number.strip()
    record = db.get(OtpCode, phone_number)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid OTP")

    expires_at = record.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) > expires_at:
        raise HTTPException(status_code=400, detail="OTP expired")
    if not verify_otp_hash(otp, record.otp_hash):
        raise HTTPException(status_code=400, detail="Wrong OTP")

    db.delete(record)
    db.commit()
    return issue_parent_token(phone_number)


# ---------------------------------------------------------------- applications

def _next_application_id(db: Session) -> str:
    sequence = db.query(func.count(Application.id)).scalar() + 1
    while True:
        candidate = f"{settings.application_id_prefix}{sequence:03d}"
        if db.get(Application, candidate) is None:
            return candidate
        sequence += 1


def _store_upload(file: UploadFile | None) -> str | None:
    try:
        return save_upload(file)
    except UploadError as exc:
        logger.error(str(exc))
        raise HTTPException(status_code=500, detail="Could not store uploaded document") from exc


def submit_application(
    db: Session,
    *,
    data: NewApplication,
    birth_cert: UploadFile | None = None,
    residence_proof: UploadFile | None = None,
) -> Application:
    birth_cert_url = _store_upload(birth_cert)
    try:
        residence_proof_url = _store_upload(residence_proof)
    except HTTPException:
        remove_upload(birth_cert_url)
        raise

    with _submission_lock:
        try:
            application = _insert_application(db, data, birth_cert_url, residence_proof_url)
        except IntegrityError as exc:
            db.rollback()
            remove_upload(birth_cert_url)
            remove_upload(residence_proof_url)
            logger.error(f"Application insert failed: {exc.orig}")
            raise HTTPException(
                status_code=409, detail="Application number already taken, please submit again"
            ) from exc
        except Exception:
            db.rollback()
            remove_upload(birth_cert_url)
            remove_upload(residence_proof_url)
            raise

    logger.info(f"Application {application.id} submitted for {application.student_name}")
    return application


def _insert_application(
    db: Session, data: NewApplication, birth_cert_url: str | None, residence_proof_url: str | None
) -> Application:
    application = Application(
        id=_next_application_id(db),
        student_name=data.student_name.strip(),
        student_dob=data.student_dob,
        student_gender=data.student_gender,
        student_pid=data.student_pid,
        ethnicity=data.ethnicity,
        place_of_birth=data.place_of_birth,
        hometown=data.hometown,
        parent_name=data.parent_name.strip(),
        parent_phone=data.parent_phone.strip(),
        address=data.address,
        enrollment_type=data.enrollment_type,
        enrollment_route=data.enrollment_route,
        is_priority=data.is_priority,
        status=ApplicationStatus.SUBMITTED,
        birth_cert_url=birth_cert_url,
        residence_proof_url=residence_proof_url,
    )
    db.add(application)
    db.commit()
    db.refresh(application)
    return application


def get_application(db: Session, application_id: str) -> Application:
    application = (
        db.query(Application)
        .filter(func.lower(Application.id) == application_id.strip().lower())
        .first()
    )
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


def list_applications(db: Session, *, status_filter: ApplicationStatus | None = None) -> list[Application]:
    query = db.query(Application)
    if status_filter is not None:
        query = query.filter(Application.status == status_filter)
    return query.order_by(Application.submitted_at.desc(), Application.id.desc()).all()


def list_parent_applications(db: Session, *, phone_number: str) -> list[Application]:
    return (
        db.query(Application)
        .filter(Application.parent_phone == phone_number)
        .order_by(Application.submitted_at.desc())
        .all()
    )


def change_status(
    db: Session,
    *,
    application_id: str,
    target: ApplicationStatus,
    rejection_reason: str | None = None,
) -> Application:
    if target == ApplicationStatus.ASSIGNED:
        raise HTTPException(status_code=400, detail="Use the class assignment endpoints to assign a class")

    application = get_application(db, application_id)
    try:
        ensure_transition(application.status, target)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    if target == ApplicationStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise HTTPException(status_code=400, detail="A rejection reason is required")
        application.rejection_reason = reason

    application.status = target
    db.commit()
    db.refresh(application)
    logger.info(f"Application {application.id} moved to {target.value}")
    return application


def confirm_payment(db: Session, *, application_id: str) -> Application:
    return change_status(db, application_id=application_id, target=ApplicationStatus.PAID_FEE)


# ---------------------------------------------------------------- classes

def _ordered_classes(db: Session) -> list[SchoolClass]:
    return db.query(SchoolClass).order_by(SchoolClass.name.asc(), SchoolClass.id.asc()).all()


def _get_class(db: Session, class_id: str) -> SchoolClass:
    school_class = db.get(SchoolClass, class_id)
    if not school_class:
        raise HTTPException(status_code=404, detail="Class not found")
    return school_class


def _occupancy(
    db: Session, classes: list[SchoolClass], *, exclude_ids: set[str] | frozenset[str] = frozenset()
) -> dict[str, int]:
    placed = db.query(Application).filter(Application.class_id.isnot(None)).all()
    return count_occupancy(
        (_applicant_snapshot(app) for app in placed if app.id not in exclude_ids),
        (_class_snapshot(c) for c in classes),
    )


def list_classes_with_occupancy(db: Session) -> list[ClassOut]:
    classes = _ordered_classes(db)
    occupancy = _occupancy(db, classes)
    return [
        ClassOut(id=c.id, name=c.name, max_size=c.max_size, occupancy=occupancy[c.id])
        for c in classes
    ]


def create_class(db: Session, *, name: str, max_size: int | None = None) -> SchoolClass:
    school_class = SchoolClass(
        id=f"CLASS_{uuid.uuid4().hex[:12].upper()}",
        name=name.strip(),
        max_size=settings.default_class_size if max_size is None else max_size,
    )
    db.add(school_class)
    db.commit()
    db.refresh(school_class)
    return school_class


def update_class(db: Session, *, class_id: str, name: str | None, max_size: int | None) -> SchoolClass:
    with _assignment_lock:
        school_class = _get_class(db, class_id)
        if max_size is not None:
            current = _occupancy(db, [school_class])[school_class.id]
            if max_size < current:
                raise HTTPException(
                    status_code=409,
                    detail=f"Class already has {current} students; capacity cannot drop to {max_size}",
                )
            school_class.max_size = max_size
        if name is not None:
            school_class.name = name.strip()
        db.commit()
        db.refresh(school_class)
        return school_class


def delete_class(db: Session, *, class_id: str) -> None:
    with _assignment_lock:
        school_class = _get_class(db, class_id)
        if _occupancy(db, [school_class])[school_class.id] > 0:
            raise HTTPException(status_code=409, detail="Cannot delete a class that still has students")
        db.delete(school_class)
        db.commit()


# ---------------------------------------------------------------- assignment

def auto_assign(db: Session) -> AutoAssignResult:
    """Place every approved, unplaced applicant and persist the result in one commit."""
    with _assignment_lock:
        classes = _ordered_classes(db)
        candidates = (
            db.query(Application)
            .filter(Application.status == ApplicationStatus.APPROVED)
            .order_by(Application.submitted_at.asc(), Application.id.asc())
            .all()
        )
        snapshots = [_applicant_snapshot(app) for app in candidates]
        occupancy = _occupancy(db, classes)

        try:
            placements = plan_placements(snapshots, [_class_snapshot(c) for c in classes], occupancy)
        except AlreadyPlacedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        by_id = {app.id: app for app in candidates}
        try:
            for placement in placements:
                application = by_id[placement.application_id]
                application.class_id = placement.class_id
                application.status = placement.status
            db.commit()
        except Exception:
            db.rollback()
            raise

        left_over = unplaced(snapshots, placements)
        logger.info(f"Auto-assignment placed {len(placements)} applicants, {len(left_over)} left without a class")
        if left_over:
            logger.warning(f"No capacity left for applications: {', '.join(left_over)}")
        return AutoAssignResult(placements=placements, unplaced_ids=left_over)


def manual_assign(db: Session, *, application_id: str, class_id: str) -> Application:
    with _assignment_lock:
        application = get_application(db, application_id)
        school_class = _get_class(db, class_id)

        if application.class_id == school_class.id and application.status == ApplicationStatus.ASSIGNED:
            return application

        try:
            ensure_transition(application.status, ApplicationStatus.ASSIGNED)
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        # Moving a student frees the seat it held.
        occupancy = _occupancy(db, [school_class], exclude_ids={application.id})
        try:
            check_capacity(_class_snapshot(school_class), occupancy)
        except ClassFullError as exc:
            logger.warning(f"Manual assignment of {application.id} refused: {exc}")
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        application.class_id = school_class.id
        application.status = ApplicationStatus.ASSIGNED
        db.commit()
        db.refresh(application)
        logger.info(f"Application {application.id} assigned to {school_class.name}")
        return application


def apply_bulk_placements(db: Session, *, placements: list[Placement]) -> list[Application]:
    """Write a caller-supplied batch of placements. Either every row is written or none."""
    ids = [p.application_id for p in placements]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=400, detail="Each application may appear only once per batch")
    if any(p.status != ApplicationStatus.ASSIGNED for p in placements):
        raise HTTPException(status_code=400, detail="Bulk placements must set status to assigned")

    with _assignment_lock:
        applications = {app.id: app for app in db.query(Application).filter(Application.id.in_(ids)).all()}
        missing = [i for i in ids if i not in applications]
        if missing:
            raise HTTPException(status_code=404, detail=f"Applications not found: {', '.join(missing)}")

        for application in applications.values():
            try:
                ensure_transition(application.status, ApplicationStatus.ASSIGNED)
            except InvalidTransitionError as exc:
                raise HTTPException(status_code=409, detail=f"{application.id}: {exc}") from exc

        classes = _ordered_classes(db)
        occupancy = _occupancy(db, classes, exclude_ids=set(ids))
        try:
            validate_placements(placements, [_class_snapshot(c) for c in classes], occupancy)
        except UnknownClassError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ClassFullError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        try:
            for placement in placements:
                application = applications[placement.application_id]
                application.class_id = placement.class_id
                application.status = placement.status
            db.commit()
        except Exception:
            db.rollback()
            raise

        return [applications[i] for i in ids]


# ---------------------------------------------------------------- site content

def _get_site_content(db: Session) -> SiteContent:
    content = db.get(SiteContent, 1)
    if content is None:
        content = SiteContent(id=1, announcement_title="Thông báo Tuyển sinh", announcement_details=[], guidelines=[])
        db.add(content)
        db.commit()
        db.refresh(content)
    return content


def _get_site_settings(db: Session) -> SiteSettings:
    site_settings = db.get(SiteSettings, 1)
    if site_settings is None:
        site_settings = SiteSettings(id=1, school_name=settings.school_name)
        db.add(site_settings)
        db.commit()
        db.refresh(site_settings)
    return site_settings


def seed_site_defaults(db: Session) -> None:
    _get_site_content(db)
    _get_site_settings(db)


def site_content_out(content: SiteContent) -> SiteContentOut:
    return SiteContentOut(
        announcement=Announcement(
            title=content.announcement_title or "Thông báo",
            details=content.announcement_details or [],
            attachment_url=content.attachment_url,
            attachment_name=content.attachment_name,
            admitted_list_url=content.admitted_list_url,
            admitted_list_name=content.admitted_list_name,
        ),
        guidelines=content.guidelines or [],
    )


def site_settings_out(site_settings: SiteSettings) -> SiteSettingsOut:
    return SiteSettingsOut(
        school_name=site_settings.school_name,
        logo_url=site_settings.logo_url,
        banner_url=site_settings.banner_url,
    )


def get_site_content(db: Session) -> SiteContentOut:
    return site_content_out(_get_site_content(db))


def get_site_settings(db: Session) -> SiteSettingsOut:
    return site_settings_out(_get_site_settings(db))


def _replace_file(
    upload: UploadFile | None, remove: bool, current_url: str | None, current_name: str | None
) -> tuple[str | None, str | None]:
    """A new upload wins, then an explicit removal, otherwise the current file is kept."""
    url = _store_upload(upload)
    if url:
        return url, upload.filename
    if remove:
        return None, None
    return current_url, current_name


def update_site_content(
    db: Session,
    *,
    announcement_data: str,
    guidelines_data: str,
    attachment: UploadFile | None = None,
    admitted_list: UploadFile | None = None,
    remove_attachment: bool = False,
    remove_admitted_list: bool = False,
) -> SiteContentOut:
    try:
        announcement = Announcement.model_validate_json(announcement_data)
        guidelines = _guidelines_adapter.validate_json(guidelines_data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid site content: {exc.errors()[0]['msg']}") from exc

    content = _get_site_content(db)
    content.announcement_title = announcement.title
    content.announcement_details = [detail.model_dump() for detail in announcement.details]
    content.guidelines = [guideline.model_dump() for guideline in guidelines]
    content.attachment_url, content.attachment_name = _replace_file(
        attachment, remove_attachment, content.attachment_url, content.attachment_name
    )
    content.admitted_list_url, content.admitted_list_name = _replace_file(
        admitted_list, remove_admitted_list, content.admitted_list_url, content.admitted_list_name
    )
    db.commit()
    db.refresh(content)
    return site_content_out(content)


def update_site_settings(
    db: Session,
    *,
    school_name: str | None = None,
    logo: UploadFile | None = None,
    banner: UploadFile | None = None,
    remove_logo: bool = False,
    remove_banner: bool = False,
) -> SiteSettingsOut:
    site_settings = _get_site_settings(db)
    if school_name and school_name.strip():
        site_settings.school_name = school_name.strip()
    site_settings.logo_url, _ = _replace_file(logo, remove_logo, site_settings.logo_url, None)
    site_settings.banner_url, _ = _replace_file(banner, remove_banner, site_settings.banner_url, None)
    db.commit()
    db.refresh(site_settings)
    return site_settings_out(site_settings)


# ---------------------------------------------------------------- snapshot

def get_snapshot(db: Session) -> SnapshotOut:
    content = site_content_out(_get_site_content(db))
    return SnapshotOut(
        applications=[application_out(app) for app in list_applications(db)],
        classes=list_classes_with_occupancy(db),
        announcement=content.announcement,
        guidelines=content.guidelines,
        settings=site_settings_out(_get_site_settings(db)),
    )
