import csv
import io
import re
from collections.abc import Iterable

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .models import Application, ApplicationStatus, EnrollmentRoute, SchoolClass
from .qr_service import remove_accents


CSV_HEADER = ["Mã HS", "Họ tên", "Ngày sinh", "Giới tính", "Phụ huynh", "SĐT", "Địa chỉ", "Lớp"]
UNASSIGNED_LABEL = "Chưa phân lớp"
ADMITTED_STATUSES = (ApplicationStatus.APPROVED, ApplicationStatus.ASSIGNED)
NON_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def admitted_applications(db: Session) -> list[Application]:
    return (
        db.query(Application)
        .filter(Application.status.in_(ADMITTED_STATUSES))
        .order_by(Application.id.asc())
        .all()
    )


def out_of_route_applications(db: Session) -> list[Application]:
    return (
        db.query(Application)
        .filter(
            Application.status.in_(ADMITTED_STATUSES),
            Application.enrollment_route == EnrollmentRoute.OUT_OF_ROUTE,
        )
        .order_by(Application.id.asc())
        .all()
    )


def class_applications(db: Session, class_id: str) -> tuple[SchoolClass, list[Application]]:
    school_class = db.get(SchoolClass, class_id)
    if not school_class:
        raise HTTPException(status_code=404, detail="Class not found")
    students = (
        db.query(Application)
        .filter(Application.class_id == class_id)
        .order_by(Application.student_name.asc(), Application.id.asc())
        .all()
    )
    return school_class, students


def render_csv(applications: Iterable[Application], class_names: dict[str, str]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for app in applications:
        writer.writerow([
            app.id,
            app.student_name,
            app.student_dob.isoformat() if app.student_dob else "",
            app.student_gender or "",
            app.parent_name,
            app.parent_phone,
            app.address or "",
            class_names.get(app.class_id, UNASSIGNED_LABEL) if app.class_id else UNASSIGNED_LABEL,
        ])
    return output.getvalue()


def class_name_map(db: Session) -> dict[str, str]:
    return {c.id: c.name for c in db.query(SchoolClass).all()}


def csv_response(content: str, filename: str) -> StreamingResponse:
    # BOM so spreadsheet tools pick up UTF-8 names.
    response = StreamingResponse(iter(["\ufeff" + content]), media_type="text/csv; charset=utf-8")
    response.headers["Content-Disposition"] = f"attachment; filename={filename}.csv"
    return response


def export_filename(class_name: str) -> str:
    # Header values must stay ASCII.
    return "DS_Lop_" + NON_FILENAME_CHARS.sub("_", remove_accents(class_name).strip())
