from __future__ import annotations

import io
import os

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from conftest import NETWORK_DOWN, FakeClock, FakeRemote, sample_worksheet
from worksheet_wizard.api.wizard import XLSX_MEDIA_TYPE
from worksheet_wizard.client.api_client import SESSION_EXPIRED_MESSAGE
from worksheet_wizard.main import app
from worksheet_wizard.models.session import Session, WizardStep
from worksheet_wizard.models.worksheet import Worksheet
from worksheet_wizard.services.session_store import SessionStore
from worksheet_wizard.services.wizard import WizardController, get_wizard_controller

CREDENTIALS = {"username": "teacher", "password": "pw"}


@pytest.fixture
def client(wizard: WizardController):
    app.dependency_overrides[get_wizard_controller] = lambda: wizard
    yield TestClient(app)
    app.dependency_overrides.clear()


def finish(wizard: WizardController, store: SessionStore) -> None:
    wizard.session = Session(
        token="tok-1",
        token_expiry=store.new_expiry(),
        step=WizardStep.COMPLETE,
        worksheet_id="job-1",
        worksheet=Worksheet.model_validate(sample_worksheet()),
    )


def test_initial_state(client: TestClient) -> None:
    response = client.get("/api/wizard/state")

    assert response.status_code == 200
    body = response.json()
    assert body["step"] == 1
    assert body["step_name"] == "login"
    assert body["difficulty_total"] == 100
    assert body["bloom_total"] == 100
    assert "token" not in body["session"]


def test_login_moves_to_configure(client: TestClient, catalog: FakeRemote) -> None:
    response = client.post("/api/wizard/login", json=CREDENTIALS)

    assert response.status_code == 200
    body = response.json()
    assert body["step"] == 2
    assert body["username"] == "teacher"
    assert body["success"] == "Login successful!"
    assert body["session"]["boards"] == [{"id": "b1", "name": "CBSE"}]
    assert "tok-1" not in response.text


def test_login_rejected(client: TestClient, remote: FakeRemote) -> None:
    remote.add("POST", "/token", (401, {"message": "Invalid username or password"}))

    response = client.post("/api/wizard/login", json=CREDENTIALS)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid username or password"
    assert client.get("/api/wizard/state").json()["error"] == "Invalid username or password"


def test_login_with_api_unreachable(client: TestClient, remote: FakeRemote) -> None:
    remote.add("POST", "/token", NETWORK_DOWN)

    response = client.post("/api/wizard/login", json=CREDENTIALS)

    assert response.status_code == 502
    assert response.json()["detail"] == "Network error"


def test_login_requires_both_fields(client: TestClient) -> None:
    response = client.post("/api/wizard/login", json={"username": "teacher"})
    assert response.status_code == 422


def test_catalog_selection_and_form_totals(client: TestClient, catalog: FakeRemote) -> None:
    client.post("/api/wizard/login", json=CREDENTIALS)

    body = client.post("/api/wizard/board", json={"board": "b1"}).json()
    assert body["session"]["grades"] == [{"id": "g5", "name": "Grade 5"}]

    body = client.post("/api/wizard/grade", json={"grade": "g5"}).json()
    assert body["session"]["subjects"] == [{"id": "s1", "name": "Science"}]

    response = client.patch("/api/wizard/form", json={"subject": "s1", "difficulty_dist": {"hard": 50}})
    assert response.status_code == 200
    body = response.json()
    assert body["difficulty_total"] == 130
    assert body["session"]["form_data"]["board"] == "b1"
    assert body["session"]["form_data"]["difficulty_dist"]["hard"] == 50


def test_metadata_with_incomplete_form(client: TestClient, catalog: FakeRemote) -> None:
    client.post("/api/wizard/login", json=CREDENTIALS)

    response = client.post("/api/wizard/metadata")

    assert response.status_code == 400
    assert "board" in response.json()["detail"]


def test_action_at_wrong_step(client: TestClient) -> None:
    response = client.post("/api/wizard/question-config")

    assert response.status_code == 409


def test_export_without_worksheet(client: TestClient) -> None:
    assert client.get("/api/wizard/export").status_code == 404
    assert client.post("/api/wizard/export").status_code == 404


def test_export_download(client: TestClient, wizard: WizardController, store: SessionStore) -> None:
    finish(wizard, store)

    response = client.get("/api/wizard/export")

    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX_MEDIA_TYPE
    assert response.headers["content-disposition"].startswith('attachment; filename="Worksheet_Science_Plants_')
    workbook = load_workbook(io.BytesIO(response.content))
    assert workbook.sheetnames == ["Summary", "MCQ Single Answer", "Short Answer"]


def test_export_to_directory(client: TestClient, wizard: WizardController, store: SessionStore) -> None:
    finish(wizard, store)

    response = client.post("/api/wizard/export")

    assert response.status_code == 201
    assert os.path.exists(response.json()["path"])


def test_create_another(client: TestClient, wizard: WizardController, store: SessionStore) -> None:
    finish(wizard, store)

    body = client.post("/api/wizard/create-another").json()

    assert body["step"] == 2
    assert body["session"]["worksheet"] is None


def test_create_another_after_expiry(
    client: TestClient, wizard: WizardController, store: SessionStore, clock: FakeClock
) -> None:
    finish(wizard, store)
    clock.advance(minutes=45)

    response = client.post("/api/wizard/create-another")

    assert response.status_code == 401
    assert response.json()["detail"] == SESSION_EXPIRED_MESSAGE
    assert client.get("/api/wizard/state").json()["step"] == 1


def test_logout(client: TestClient, catalog: FakeRemote, store: SessionStore) -> None:
    client.post("/api/wizard/login", json=CREDENTIALS)
    assert os.path.exists(store.path)

    body = client.post("/api/wizard/logout").json()

    assert body["step"] == 1
    assert body["username"] == ""
    assert not os.path.exists(store.path)


def test_root_and_health(client: TestClient) -> None:
    assert client.get("/").json()["status"] == "operational"

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["step"] == 1
    assert "X-Process-Time-Ms" in response.headers
