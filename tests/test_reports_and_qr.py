import base64
import csv
import io

import requests

from backend.enrollment_module import qr_service
from backend.enrollment_module.models import ApplicationStatus, EnrollmentRoute
from backend.enrollment_module.qr_service import build_qr_url, build_transfer_description, remove_accents


def read_csv(res):
    assert res.headers["content-type"].startswith("text/csv")
    text = res.content.decode("utf-8-sig")
    return list(csv.reader(io.StringIO(text)))


def test_admitted_report(client, admin_headers, make_class, make_application):
    make_class("A", "1A")
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A", student_name="Lê Văn Cường")
    make_application("S2", status=ApplicationStatus.APPROVED)
    make_application("S3", status=ApplicationStatus.REVIEWING)

    res = client.get("/api/reports/admitted.csv", headers=admin_headers)

    rows = read_csv(res)
    assert rows[0][0] == "Mã HS"
    assert [r[0] for r in rows[1:]] == ["S1", "S2"]
    assert rows[1][1] == "Lê Văn Cường"
    assert rows[1][-1] == "1A"
    assert rows[2][-1] == "Chưa phân lớp"
    assert "DS_Trung_Tuyen.csv" in res.headers["content-disposition"]


def test_out_of_route_report(client, admin_headers, make_application):
    make_application("S1", route=EnrollmentRoute.OUT_OF_ROUTE)
    make_application("S2", route=EnrollmentRoute.IN_ROUTE)
    make_application("S3", route=EnrollmentRoute.OUT_OF_ROUTE, status=ApplicationStatus.REJECTED)

    rows = read_csv(client.get("/api/reports/out-of-route.csv", headers=admin_headers))

    assert [r[0] for r in rows[1:]] == ["S1"]


def test_class_report(client, admin_headers, make_class, make_application):
    make_class("A", "Lớp 1A")
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A")

    res = client.get("/api/reports/classes/A.csv", headers=admin_headers)

    assert [r[0] for r in read_csv(res)[1:]] == ["S1"]
    assert "DS_Lop_Lop_1A.csv" in res.headers["content-disposition"]


def test_class_report_unknown_class(client, admin_headers):
    assert client.get("/api/reports/classes/NOPE.csv", headers=admin_headers).status_code == 404


def test_remove_accents():
    assert remove_accents("Nguyễn Đức Định") == "Nguyen Duc Dinh"


def test_transfer_description_and_url():
    assert build_transfer_description("NH25001", "Trần Thị Mai") == "NH25001 Tran Thi Mai"
    url = build_qr_url("NH25001", "Trần Thị Mai")
    assert "-compact.png?amount=" in url
    assert "addInfo=NH25001%20Tran%20Thi%20Mai" in url


class FakeImage:
    content = b"\x89PNG fake"

    def raise_for_status(self):
        return None


def test_qr_code_endpoint(client, make_application, monkeypatch):
    make_application("NH25001", student_name="Trần Thị Mai")
    requested = []

    def fake_get(url, timeout):
        requested.append(url)
        return FakeImage()

    monkeypatch.setattr(qr_service.requests, "get", fake_get)

    res = client.get("/api/qr-code/NH25001")

    assert res.status_code == 200
    data_url = res.json()["qr_data_url"]
    assert data_url == "data:image/png;base64," + base64.b64encode(FakeImage.content).decode()
    assert "Tran%20Thi%20Mai" in requested[0]


def test_qr_code_upstream_failure(client, make_application, monkeypatch):
    make_application("NH25001")

    def broken(url, timeout):
        raise requests.Timeout("slow")

    monkeypatch.setattr(qr_service.requests, "get", broken)

    assert client.get("/api/qr-code/NH25001").status_code == 502


def test_qr_code_unknown_application(client):
    assert client.get("/api/qr-code/NOPE").status_code == 404
