from datetime import date

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from sqlalchemy.orm import Session

from .assignment import Placement
from .database import get_db_session
from .middleware import get_current_parent_phone, get_current_user, require_admin
from .models import ApplicationStatus, EnrollmentRoute, EnrollmentType, User
from .qr_service import QrServiceError, fetch_qr_data_url
from .reports import (
    admitted_applications,
    class_applications,
    class_name_map,
    csv_response,
    export_filename,
    out_of_route_applications,
    render_csv,
)
from .schemas import (
    AdminLoginRequest,
    ApplicationOut,
    ApplicationStatusOut,
    AutoAssignResponse,
    BulkUpdateRequest,
    ClassCreateRequest,
    ClassOut,
    ClassUpdateRequest,
    LoginResponse,
    ManualAssignRequest,
    PlacementOut,
    QrCodeOut,
    SendOtpRequest,
    SendOtpResponse,
    SiteContentOut,
    SiteSettingsOut,
    SnapshotOut,
    StatusChangeRequest,
    UserOut,
    VerifyOtpRequest,
)
from .services import (
    NewApplication,
    application_out,
    application_status_out,
    apply_bulk_placements,
    auto_assign,
    change_status,
    confirm_payment,
    create_class,
    delete_class,
    get_application,
    get_site_content,
    get_site_settings,
    get_snapshot,
    list_applications,
    list_classes_with_occupancy,
    list_parent_applications,
    login_admin,
    manual_assign,
    request_otp,
    submit_application,
    update_class,
    update_site_content,
    update_site_settings,
    verify_parent_otp,
)

router = APIRouter(prefix="/api", tags=["Enrollment"])


# ---------------------------------------------------------------- public

@router.get("/data", response_model=SnapshotOut)
def data_snapshot(db: Session = Depends(get_db_session)):
    return get_snapshot(db)


@router.get("/settings", response_model=SiteSettingsOut)
def read_settings(db: Session = Depends(get_db_session)):
    return get_site_settings(db)


@router.get("/site-content", response_model=SiteContentOut)
def read_site_content(db: Session = Depends(get_db_session)):
    return get_site_content(db)


@router.get("/applications/{application_id}/status", response_model=ApplicationStatusOut)
def application_status(application_id: str, db: Session = Depends(get_db_session)):
    return application_status_out(get_application(db, application_id))


@router.get("/qr-code/{application_id}", response_model=QrCodeOut)
def payment_qr_code(application_id: str, db: Session = Depends(get_db_session)):
    application = get_application(db, application_id)
    try:
        data_url = fetch_qr_data_url(application.id, application.student_name)
    except QrServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return QrCodeOut(qr_data_url=data_url)


# ---------------------------------------------------------------- auth

@router.post("/auth/send-otp", response_model=SendOtpResponse)
def send_otp(payload: SendOtpRequest, db: Session = Depends(get_db_session)):
    dev_otp = request_otp(db, phone_number=payload.phone_number)
    if dev_otp is not None:
        return SendOtpResponse(message="Dev Mode", dev_otp=dev_otp)
    return SendOtpResponse(message="OTP Sent")


@router.post("/auth/verify-otp", response_model=LoginResponse)
def verify_otp(payload: VerifyOtpRequest, db: Session = Depends(get_db_session)):
    token = verify_parent_otp(db, phone_number=payload.phone_number, otp=payload.otp)
    return LoginResponse(access_token=token, role="parent")


@router.post("/auth/admin/login", response_model=LoginResponse)
def admin_login(payload: AdminLoginRequest, db: Session = Depends(get_db_session)):
    token, role = login_admin(db, email=payload.email, password=payload.password)
    return LoginResponse(access_token=token, role=role.value)


@router.get("/auth/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return UserOut(id=current_user.id, email=current_user.email, role=current_user.role)


# ---------------------------------------------------------------- parent

@router.post("/applications", response_model=ApplicationOut, status_code=status.HTTP_201_CREATED)
def create_application(
    student_name: str = Form(..., min_length=2, max_length=255),
    student_dob: date | None = Form(None),
    student_gender: str | None = Form(None, max_length=10),
    student_pid: str | None = Form(None, max_length=50),
    ethnicity: str | None = Form(None, max_length=50),
    place_of_birth: str | None = Form(None, max_length=255),
    hometown: str | None = Form(None, max_length=255),
    parent_name: str = Form(..., min_length=2, max_length=255),
    parent_phone: str | None = Form(None, max_length=20),
    address: str | None = Form(None),
    enrollment_type: EnrollmentType = Form(...),
    enrollment_route: EnrollmentRoute = Form(...),
    is_priority: bool = Form(False),
    birth_cert: UploadFile | None = File(None),
    residence_proof: UploadFile | None = File(None),
    db: Session = Depends(get_db_session),
    login_phone: str = Depends(get_current_parent_phone),
):
    if parent_phone and parent_phone.strip() != login_phone:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Applications must use the phone number you logged in with"
        )
    data = NewApplication(
        student_name=student_name,
        student_dob=student_dob,
        student_gender=student_gender,
        student_pid=student_pid,
        ethnicity=ethnicity,
        place_of_birth=place_of_birth,
        hometown=hometown,
        parent_name=parent_name,
        parent_phone=login_phone,
        address=address,
        enrollment_type=enrollment_type,
        enrollment_route=enrollment_route,
        is_priority=is_priority,
    )
    application = submit_application(db, data=data, birth_cert=birth_cert, residence_proof=residence_proof)
    return application_out(application)


@router.get("/parent/applications", response_model=list[ApplicationOut])
def parent_applications(
    db: Session = Depends(get_db_session),
    phone_number: str = Depends(get_current_parent_phone),
):
    return [application_out(app) for app in list_parent_applications(db, phone_number=phone_number)]


# ---------------------------------------------------------------- admin: applications

@router.get("/applications", response_model=list[ApplicationOut])
def admin_list_applications(
    status_filter: ApplicationStatus | None = None,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    return [application_out(app) for app in list_applications(db, status_filter=status_filter)]


@router.patch("/applications/{application_id}/status", response_model=ApplicationOut)
def admin_change_status(
    application_id: str,
    payload: StatusChangeRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    application = change_status(
        db,
        application_id=application_id,
        target=payload.status,
        rejection_reason=payload.rejection_reason,
    )
    return application_out(application)


@router.post("/applications/{application_id}/confirm-payment", response_model=ApplicationOut)
def admin_confirm_payment(
    application_id: str,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    return application_out(confirm_payment(db, application_id=application_id))


@router.post("/applications/{application_id}/assign", response_model=ApplicationOut)
def admin_manual_assign(
    application_id: str,
    payload: ManualAssignRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    return application_out(manual_assign(db, application_id=application_id, class_id=payload.class_id))


@router.put("/applications/bulk-update", response_model=list[ApplicationOut])
def admin_bulk_update(
    payload: BulkUpdateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    placements = [
        Placement(application_id=update.id, class_id=update.class_id, status=update.status)
        for update in payload.updates
    ]
    return [application_out(app) for app in apply_bulk_placements(db, placements=placements)]


# ---------------------------------------------------------------- admin: classes

@router.get("/classes", response_model=list[ClassOut])
def admin_list_classes(db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    return list_classes_with_occupancy(db)


@router.post("/classes", response_model=ClassOut, status_code=status.HTTP_201_CREATED)
def admin_create_class(
    payload: ClassCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    school_class = create_class(db, name=payload.name, max_size=payload.max_size)
    return ClassOut(id=school_class.id, name=school_class.name, max_size=school_class.max_size, occupancy=0)


@router.put("/classes/{class_id}", response_model=ClassOut)
def admin_update_class(
    class_id: str,
    payload: ClassUpdateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    update_class(db, class_id=class_id, name=payload.name, max_size=payload.max_size)
    return next(c for c in list_classes_with_occupancy(db) if c.id == class_id)


@router.delete("/classes/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_class(class_id: str, db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    delete_class(db, class_id=class_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/classes/auto-assign", response_model=AutoAssignResponse)
def admin_auto_assign(db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    result = auto_assign(db)
    return AutoAssignResponse(
        placements=[
            PlacementOut(application_id=p.application_id, class_id=p.class_id, status=p.status)
            for p in result.placements
        ],
        unplaced_ids=result.unplaced_ids,
    )


# ---------------------------------------------------------------- admin: site content

@router.put("/site-content", response_model=SiteContentOut)
def admin_update_site_content(
    announcement_data: str = Form(...),
    guidelines_data: str = Form("[]"),
    remove_attachment: bool = Form(False),
    remove_admitted_list: bool = Form(False),
    attachment: UploadFile | None = File(None),
    admitted_list: UploadFile | None = File(None),
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    return update_site_content(
        db,
        announcement_data=announcement_data,
        guidelines_data=guidelines_data,
        attachment=attachment,
        admitted_list=admitted_list,
        remove_attachment=remove_attachment,
        remove_admitted_list=remove_admitted_list,
    )


@router.put("/settings", response_model=SiteSettingsOut)
def admin_update_settings(
    school_name: str | None = Form(None, max_length=255),
    remove_logo: bool = Form(False),
    remove_banner: bool = Form(False),
    logo: UploadFile | None = File(None),
    banner: UploadFile | None = File(None),
    db: Session = Depends(get_db_session),
    _: User = Depends(require_admin),
):
    return update_site_settings(
        db,
        school_name=school_name,
        logo=logo,
        banner=banner,
        remove_logo=remove_logo,
        remove_banner=remove_banner,
    )


# ---------------------------------------------------------------- admin: reports

@router.get("/reports/admitted.csv")
def report_admitted(db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    content = render_csv(admitted_applications(db), class_name_map(db))
    return csv_response(content, "DS_Trung_Tuyen")


@router.get("/reports/out-of-route.csv")
def report_out_of_route(db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    content = render_csv(out_of_route_applications(db), class_name_map(db))
    return csv_response(content, "DS_Ngoai_Tuyen")


@router.get("/reports/classes/{class_id}.csv")
def report_class(class_id: str, db: Session = Depends(get_db_session), _: User = Depends(require_admin)):
    school_class, students = class_applications(db, class_id)
    content = render_csv(students, {school_class.id: school_class.name})
    return csv_response(content, export_filename(school_class.name))
