from backend.enrollment_module.config import settings
from backend.enrollment_module.models import Application, ApplicationStatus, EnrollmentRoute, SchoolClass


def fetch(db, app_id):
    db.expire_all()
    return db.get(Application, app_id)


def test_auto_assign_places_and_persists(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=2)
    make_class("B", "1B", max_size=1)
    make_application("S1")
    make_application("S2", is_priority=True, route=EnrollmentRoute.OUT_OF_ROUTE)
    make_application("S3")

    res = client.post("/api/classes/auto-assign", headers=admin_headers)

    assert res.status_code == 200, res.text
    body = res.json()
    assert [(p["application_id"], p["class_id"]) for p in body["placements"]] == [
        ("S2", "A"),
        ("S1", "A"),
        ("S3", "B"),
    ]
    assert body["unplaced_ids"] == []
    assert fetch(db, "S3").class_id == "B"
    assert fetch(db, "S3").status == ApplicationStatus.ASSIGNED


def test_auto_assign_reports_unplaced_and_leaves_them_approved(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_application("S1")
    make_application("S2", is_priority=True)

    body = client.post("/api/classes/auto-assign", headers=admin_headers).json()

    assert [p["application_id"] for p in body["placements"]] == ["S2"]
    assert body["unplaced_ids"] == ["S1"]
    left = fetch(db, "S1")
    assert left.status == ApplicationStatus.APPROVED
    assert left.class_id is None


def test_auto_assign_counts_students_already_placed(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_class("B", "1B", max_size=5)
    make_application("OLD", status=ApplicationStatus.ASSIGNED, class_id="A")
    make_application("NEW")

    body = client.post("/api/classes/auto-assign", headers=admin_headers).json()

    assert body["placements"] == [{"application_id": "NEW", "class_id": "B", "status": "assigned"}]


def test_auto_assign_twice_is_a_no_op(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=3)
    make_application("S1")
    client.post("/api/classes/auto-assign", headers=admin_headers)

    body = client.post("/api/classes/auto-assign", headers=admin_headers).json()

    assert body == {"placements": [], "unplaced_ids": []}


def test_auto_assign_refuses_approved_record_holding_a_class(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=3)
    make_application("BROKEN", status=ApplicationStatus.APPROVED, class_id="A")
    make_application("S1")

    res = client.post("/api/classes/auto-assign", headers=admin_headers)

    assert res.status_code == 409
    assert fetch(db, "S1").class_id is None


def test_auto_assign_requires_admin(client, parent_headers):
    assert client.post("/api/classes/auto-assign").status_code == 401
    assert client.post("/api/classes/auto-assign", headers=parent_headers).status_code == 403


def test_manual_assign_into_full_class_fails(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_application("OLD", status=ApplicationStatus.ASSIGNED, class_id="A")
    make_application("S1")

    res = client.post("/api/applications/S1/assign", json={"class_id": "A"}, headers=admin_headers)

    assert res.status_code == 409
    unchanged = fetch(db, "S1")
    assert unchanged.status == ApplicationStatus.APPROVED
    assert unchanged.class_id is None


def test_manual_assign_with_free_seat(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=2)
    make_application("OLD", status=ApplicationStatus.ASSIGNED, class_id="A")
    make_application("S1")

    res = client.post("/api/applications/S1/assign", json={"class_id": "A"}, headers=admin_headers)

    assert res.status_code == 200, res.text
    assert res.json()["status"] == "assigned"
    assert res.json()["class_id"] == "A"
    classes = client.get("/api/classes", headers=admin_headers).json()
    assert classes == [{"id": "A", "name": "1A", "max_size": 2, "occupancy": 2}]


def test_manual_move_frees_previous_seat(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_class("B", "1B", max_size=1)
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A")

    res = client.post("/api/applications/S1/assign", json={"class_id": "B"}, headers=admin_headers)

    assert res.status_code == 200
    occupancy = {c["id"]: c["occupancy"] for c in client.get("/api/classes", headers=admin_headers).json()}
    assert occupancy == {"A": 0, "B": 1}


def test_manual_assign_same_class_is_idempotent(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A")

    res = client.post("/api/applications/S1/assign", json={"class_id": "A"}, headers=admin_headers)

    assert res.status_code == 200
    assert res.json()["class_id"] == "A"


def test_manual_assign_rejected_application_is_refused(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=3)
    make_application("S1", status=ApplicationStatus.REJECTED)

    res = client.post("/api/applications/S1/assign", json={"class_id": "A"}, headers=admin_headers)

    assert res.status_code == 409


def test_manual_assign_unknown_class(client, admin_headers, make_application):
    make_application("S1")
    res = client.post("/api/applications/S1/assign", json={"class_id": "NOPE"}, headers=admin_headers)
    assert res.status_code == 404


def test_bulk_update_writes_all_rows(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=2)
    make_application("S1")
    make_application("S2")

    res = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A"}, {"id": "S2", "class_id": "A"}]},
        headers=admin_headers,
    )

    assert res.status_code == 200, res.text
    assert [a["id"] for a in res.json()] == ["S1", "S2"]
    assert fetch(db, "S2").class_id == "A"


def test_bulk_update_overflow_writes_nothing(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=1)
    make_application("S1")
    make_application("S2")

    res = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A"}, {"id": "S2", "class_id": "A"}]},
        headers=admin_headers,
    )

    assert res.status_code == 409
    assert fetch(db, "S1").class_id is None


def test_bulk_update_unknown_class_fails_whole_batch(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=5)
    make_application("S1")
    make_application("S2")

    res = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A"}, {"id": "S2", "class_id": "GHOST"}]},
        headers=admin_headers,
    )

    assert res.status_code == 404
    assert fetch(db, "S1").class_id is None


def test_bulk_update_rejects_duplicates_and_other_statuses(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=5)
    make_application("S1")

    duplicate = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A"}, {"id": "S1", "class_id": "A"}]},
        headers=admin_headers,
    )
    wrong_status = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A", "status": "approved"}]},
        headers=admin_headers,
    )

    assert duplicate.status_code == 400
    assert wrong_status.status_code == 400


def test_bulk_update_unknown_application_writes_nothing(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=5)
    make_application("S1")

    res = client.put(
        "/api/applications/bulk-update",
        json={"updates": [{"id": "S1", "class_id": "A"}, {"id": "MISSING", "class_id": "A"}]},
        headers=admin_headers,
    )

    assert res.status_code == 404
    assert "MISSING" in res.json()["detail"]
    assert fetch(db, "S1").class_id is None
    assert fetch(db, "S1").status == ApplicationStatus.APPROVED


def test_bulk_update_forbidden_transition_writes_nothing(client, admin_headers, db, make_class, make_application):
    make_class("A", "1A", max_size=5)
    make_application("S1")
    make_application("S2", status=ApplicationStatus.REJECTED)
    make_application("S3", status=ApplicationStatus.SUBMITTED)

    res = client.put(
        "/api/applications/bulk-update",
        json={
            "updates": [
                {"id": "S1", "class_id": "A"},
                {"id": "S2", "class_id": "A"},
                {"id": "S3", "class_id": "A"},
            ]
        },
        headers=admin_headers,
    )

    assert res.status_code == 409
    for app_id, status in [
        ("S1", ApplicationStatus.APPROVED),
        ("S2", ApplicationStatus.REJECTED),
        ("S3", ApplicationStatus.SUBMITTED),
    ]:
        application = fetch(db, app_id)
        assert application.class_id is None
        assert application.status == status


def test_class_crud(client, admin_headers, db):
    created = client.post("/api/classes", json={"name": "1A", "max_size": 30}, headers=admin_headers)
    assert created.status_code == 201
    class_id = created.json()["id"]
    assert class_id.startswith("CLASS_")

    updated = client.put(f"/api/classes/{class_id}", json={"name": "1A1", "max_size": 25}, headers=admin_headers)
    assert updated.json() == {"id": class_id, "name": "1A1", "max_size": 25, "occupancy": 0}

    assert client.delete(f"/api/classes/{class_id}", headers=admin_headers).status_code == 204
    db.expire_all()
    assert db.get(SchoolClass, class_id) is None


def test_create_class_defaults_capacity(client, admin_headers):
    res = client.post("/api/classes", json={"name": "1B"}, headers=admin_headers)

    assert res.status_code == 201
    assert res.json()["max_size"] == settings.default_class_size


def test_classes_listed_by_name(client, admin_headers, make_class):
    make_class("X", "1C")
    make_class("Y", "1A")
    make_class("Z", "1B")

    names = [c["name"] for c in client.get("/api/classes", headers=admin_headers).json()]

    assert names == ["1A", "1B", "1C"]


def test_occupied_class_cannot_be_deleted(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=3)
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A")

    assert client.delete("/api/classes/A", headers=admin_headers).status_code == 409


def test_capacity_cannot_drop_below_occupancy(client, admin_headers, make_class, make_application):
    make_class("A", "1A", max_size=3)
    make_application("S1", status=ApplicationStatus.ASSIGNED, class_id="A")
    make_application("S2", status=ApplicationStatus.ASSIGNED, class_id="A")

    assert client.put("/api/classes/A", json={"max_size": 1}, headers=admin_headers).status_code == 409
    assert client.put("/api/classes/A", json={"max_size": 2}, headers=admin_headers).status_code == 200


def test_negative_capacity_is_invalid(client, admin_headers):
    res = client.post("/api/classes", json={"name": "1A", "max_size": -1}, headers=admin_headers)
    assert res.status_code == 422
