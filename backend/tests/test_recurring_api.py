from datetime import date
from uuid import uuid4

from fastapi.testclient import TestClient

from expense_tracker import main
from expense_tracker.main import app

client = TestClient(app)


def owner() -> dict[str, str]:
    return {"X-User-Id": str(uuid4())}


def create(headers, **payload) -> dict:
    body = {"amount": 1000, "category": "Subscriptions", "description": "Music", "startDate": "2024-05-01"}
    body.update(payload)
    res = client.post("/api/v1/recurring", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_new_charge_is_first_due_on_its_start_date() -> None:
    created = create(owner())
    assert created["frequency"] == "monthly"
    assert created["nextDueDate"] == "2024-05-01"
    assert created["isActive"] is True


def test_next_due_before_start_is_rejected() -> None:
    res = client.post(
        "/api/v1/recurring",
        json={"amount": 10, "startDate": "2024-05-10", "nextDueDate": "2024-05-01"},
        headers=owner(),
    )
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_frequency_and_category_are_rejected() -> None:
    headers = owner()
    bad_frequency = client.post(
        "/api/v1/recurring", json={"amount": 10, "startDate": "2024-05-01", "frequency": "daily"}, headers=headers
    )
    bad_category = client.post(
        "/api/v1/recurring", json={"amount": 10, "startDate": "2024-05-01", "category": "Food"}, headers=headers
    )
    assert bad_frequency.status_code == 422
    assert bad_category.status_code == 422


def test_list_is_ordered_by_next_due_date() -> None:
    headers = owner()
    create(headers, description="Later", startDate="2024-06-15")
    create(headers, description="Sooner", startDate="2024-05-02")

    listed = client.get("/api/v1/recurring", headers=headers).json()

    assert [c["description"] for c in listed] == ["Sooner", "Later"]


def test_update_rejects_moving_due_date_before_start() -> None:
    headers = owner()
    created = create(headers, startDate="2024-05-10")

    res = client.put(f"/api/v1/recurring/{created['id']}", json={"nextDueDate": "2024-05-01"}, headers=headers)

    assert res.status_code == 422
    unchanged = client.get(f"/api/v1/recurring/{created['id']}", headers=headers).json()
    assert unchanged["nextDueDate"] == "2024-05-10"


def test_toggle_pauses_and_resumes() -> None:
    headers = owner()
    created = create(headers)

    paused = client.post(f"/api/v1/recurring/{created['id']}/toggle", headers=headers).json()
    resumed = client.post(f"/api/v1/recurring/{created['id']}/toggle", headers=headers).json()

    assert paused["isActive"] is False
    assert resumed["isActive"] is True


def test_process_posts_only_callers_active_charges(monkeypatch) -> None:
    monkeypatch.setattr(main, "_today", lambda: date(2024, 5, 10))
    mine = owner()
    theirs = owner()
    active = create(mine, description="Gym")
    paused = create(mine, description="Magazine")
    client.post(f"/api/v1/recurring/{paused['id']}/toggle", headers=mine)
    other = create(theirs, description="Not mine")

    res = client.post("/api/v1/recurring/process", headers=mine)

    assert res.status_code == 200
    assert res.json() == {"processed": 1, "skipped": 0, "failures": []}
    posted = client.get("/api/v1/transactions", headers=mine).json()["items"]
    assert [(t["description"], t["recurringChargeId"]) for t in posted] == [("Gym (Auto)", active["id"])]
    assert client.get(f"/api/v1/recurring/{other['id']}", headers=theirs).json()["nextDueDate"] == "2024-05-01"


def test_summary_totals_and_upcoming(monkeypatch) -> None:
    monkeypatch.setattr(main, "_today", lambda: date(2024, 5, 10))
    headers = owner()
    create(headers, amount=1000, description="Music", startDate="2024-05-20")
    create(headers, amount=50, description="Coffee club", frequency="weekly", startDate="2024-05-12")
    create(headers, amount=1200, description="Domain", frequency="yearly", startDate="2024-09-01")
    paused = create(headers, amount=999, description="Paused", startDate="2024-05-15")
    client.post(f"/api/v1/recurring/{paused['id']}/toggle", headers=headers)

    summary = client.get("/api/v1/recurring/summary", headers=headers).json()

    assert summary["monthlyTotal"] == "1000"
    assert summary["monthlyCount"] == 1
    assert summary["yearlyProjection"] == "15800"
    assert summary["activeCount"] == 3
    assert summary["pausedCount"] == 1
    assert summary["dueThisMonthCount"] == 2
    assert summary["dueThisMonthTotal"] == "1050"
    assert [(c["description"], c["daysUntil"]) for c in summary["dueThisMonth"]] == [
        ("Coffee club", 2),
        ("Music", 10),
    ]


def test_delete_and_foreign_owner_gets_404() -> None:
    mine = owner()
    created = create(mine)

    assert client.delete(f"/api/v1/recurring/{created['id']}", headers=owner()).status_code == 404
    assert client.delete(f"/api/v1/recurring/{created['id']}", headers=mine).status_code == 204
    assert client.get(f"/api/v1/recurring/{created['id']}", headers=mine).status_code == 404
