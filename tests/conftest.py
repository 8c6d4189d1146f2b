import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="enrollment-tests-")
os.environ["ENROLLMENT_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENROLLMENT_UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["ALLOW_OTP_CONSOLE_FALLBACK"] = "true"
os.environ["ADMIN_LOGIN_EMAIL"] = "admin@school.local"
os.environ["ADMIN_LOGIN_PASSWORD"] = "ChangeMe@123"
for key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
    os.environ[key] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from backend.backend import app  # noqa: E402
from backend.enrollment_module.database import Base, SessionLocal, engine  # noqa: E402
from backend.enrollment_module.models import (  # noqa: E402
    Application,
    ApplicationStatus,
    EnrollmentRoute,
    EnrollmentType,
    SchoolClass,
)
from backend.enrollment_module.security import issue_parent_token  # noqa: E402

PARENT_PHONE = "0912345678"


@pytest.fixture
def client():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(client):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def admin_headers(client):
    res = client.post(
        "/api/auth/admin/login",
        json={"email": "admin@school.local", "password": "ChangeMe@123"},
    )
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
def parent_headers():
    token = issue_parent_token(PARENT_PHONE)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_class(db):
    def factory(class_id, name=None, max_size=35):
        school_class = SchoolClass(id=class_id, name=name or class_id, max_size=max_size)
        db.add(school_class)
        db.commit()
        return school_class

    return factory


@pytest.fixture
def make_application(db):
    def factory(
        app_id,
        status=ApplicationStatus.APPROVED,
        is_priority=False,
        route=EnrollmentRoute.IN_ROUTE,
        class_id=None,
        student_name="Nguyễn Văn An",
    ):
        application = Application(
            id=app_id,
            student_name=student_name,
            parent_name="Nguyễn Văn Bình",
            parent_phone=PARENT_PHONE,
            address="12 Lê Lợi",
            enrollment_type=EnrollmentType.GRADE_1,
            enrollment_route=route,
            is_priority=is_priority,
            status=status,
            class_id=class_id,
        )
        db.add(application)
        db.commit()
        return application

    return factory
