from __future__ import annotations

import json

import pytest

from conftest import API_BASE, NETWORK_DOWN, FakeRemote, job_body
from worksheet_wizard.client.api_client import (
    SESSION_EXPIRED_MESSAGE,
    APIValidationError,
    AuthExpiredError,
    JobNotFoundError,
    LoginFailedError,
    NetworkError,
    WorksheetAPIClient,
    job_status_endpoint,
)
from worksheet_wizard.models.jobs import JobKind
from worksheet_wizard.models.session import FormData


@pytest.mark.anyio
async def test_login_posts_form_encoded_password_grant(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/token", (200, {"access_token": "tok-1"}))

    assert await api.login("teacher", "pw") == "tok-1"

    request = remote.calls("POST", "/token")[0]
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert b"grant_type=password" in request.content
    assert b"username=teacher" in request.content
    assert "authorization" not in request.headers


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("response", "message"),
    [
        ((400, {"message": "Invalid username or password"}), "Invalid username or password"),
        ((401, {"detail": "nope"}), "Login failed"),
        ((500, "<html>oops</html>"), "Login failed"),
    ],
)
async def test_login_failure_messages(api: WorksheetAPIClient, remote: FakeRemote, response, message) -> None:
    remote.add("POST", "/token", response)

    with pytest.raises(LoginFailedError) as exc:
        await api.login("teacher", "bad")
    assert str(exc.value) == message


@pytest.mark.anyio
async def test_network_failure_is_reported_as_network_error(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/token", NETWORK_DOWN)

    with pytest.raises(NetworkError) as exc:
        await api.login("teacher", "pw")
    assert str(exc.value) == "Network error"


@pytest.mark.anyio
async def test_catalog_calls_send_bearer_token(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("GET", "/metadata/v1/board/b1/grades/g5/subjects", (200, [{"id": "s1", "name": "Science"}]))

    subjects = await api.list_subjects("tok-1", "b1", "g5")

    assert [(s.id, s.name) for s in subjects] == [("s1", "Science")]
    assert remote.requests[0].headers["authorization"] == "Bearer tok-1"


@pytest.mark.anyio
async def test_401_runs_expiry_hook_before_body_is_read(remote: FakeRemote) -> None:
    seen: list[str] = []
    api = WorksheetAPIClient(API_BASE, on_auth_expired=seen.append, transport=remote.transport())
    remote.add("GET", "/metadata/v1/board", (401, "not json at all"))

    with pytest.raises(AuthExpiredError) as exc:
        await api.list_boards("tok-old")

    assert seen == ["tok-old"]
    assert str(exc.value) == SESSION_EXPIRED_MESSAGE


@pytest.mark.anyio
async def test_async_expiry_hook_is_awaited(remote: FakeRemote) -> None:
    seen: list[str] = []

    async def hook(token: str) -> None:
        seen.append(token)

    api = WorksheetAPIClient(API_BASE, on_auth_expired=hook, transport=remote.transport())
    remote.add("POST", "/worksheet/v1/metadata", (401, {"detail": "expired"}))

    with pytest.raises(AuthExpiredError):
        await api.submit_metadata_job("tok-1", FormData(board="b1", grade="g5", subject="s1"))
    assert seen == ["tok-1"]


@pytest.mark.anyio
async def test_submit_metadata_job_sends_multipart_fields(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/worksheet/v1/metadata", (200, {"detail": [{"id": "job-42"}]}))
    form = FormData(board="b1", grade="g5", subject="s1", topic="Plants", num_questions=12)

    assert await api.submit_metadata_job("tok-1", form) == "job-42"

    request = remote.calls("POST", "/worksheet/v1/metadata")[0]
    assert request.headers["content-type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="board"' in body
    assert b'name="number_of_questions"\r\n\r\n12' in body
    assert b'name="topic"\r\n\r\nPlants' in body
    assert b'name="section"' not in body
    assert json.dumps(form.difficulty_dist).encode() in body


@pytest.mark.anyio
async def test_submit_metadata_job_surfaces_server_message(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/worksheet/v1/metadata", (422, {"detail": [{"msg": "topic too long"}]}))

    with pytest.raises(APIValidationError) as exc:
        await api.submit_metadata_job("tok-1", FormData(board="b1", grade="g5", subject="s1"))
    assert str(exc.value) == "topic too long"


@pytest.mark.anyio
async def test_submit_metadata_job_without_id_uses_fallback(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/worksheet/v1/metadata", (200, {"detail": []}))

    with pytest.raises(APIValidationError) as exc:
        await api.submit_metadata_job("tok-1", FormData(board="b1", grade="g5", subject="s1"))
    assert str(exc.value) == "Failed to generate metadata"


@pytest.mark.anyio
async def test_question_config_and_worksheet_jobs_post_json(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    remote.add("POST", "/worksheet/v1/question-config/job-1", (200, {"detail": "accepted"}))
    remote.add("POST", "/worksheet/v1/generate-worksheet/job-1", (400, {"detail": [{"msg": "bad config"}]}))

    await api.submit_question_config_job("tok-1", "job-1", {"unit": "Plants"}, ["LS-1"])
    sent = json.loads(remote.calls("POST", "/worksheet/v1/question-config/job-1")[0].content)
    assert sent == {"subject_matter": {"unit": "Plants"}, "learning_standards": ["LS-1"]}

    with pytest.raises(APIValidationError) as exc:
        await api.submit_worksheet_job("tok-1", "job-1", {"question_type_summary": []})
    assert str(exc.value) == "bad config"


@pytest.mark.anyio
async def test_fetch_job_status(api: WorksheetAPIClient, remote: FakeRemote) -> None:
    endpoint = job_status_endpoint(JobKind.METADATA, "job-1")
    remote.add("GET", endpoint, job_body("In Progress"), (404, {"detail": "Not Found"}), (200, {"unexpected": True}))

    status = await api.fetch_job_status("tok-1", endpoint)
    assert status.status == "In Progress"

    with pytest.raises(JobNotFoundError):
        await api.fetch_job_status("tok-1", endpoint)

    with pytest.raises(ValueError):
        await api.fetch_job_status("tok-1", endpoint)


def test_job_status_endpoints() -> None:
    assert job_status_endpoint(JobKind.METADATA, "7") == "/worksheet/v1/metadata/7"
    assert job_status_endpoint(JobKind.QUESTION_CONFIG, "7") == "/worksheet/v1/question-config/7"
    assert job_status_endpoint(JobKind.WORKSHEET, "7") == "/worksheet/v1/generate-worksheet/7"
