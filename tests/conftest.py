"""Shared fixtures: a scripted stand-in for the remote worksheet API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from worksheet_wizard.client.api_client import WorksheetAPIClient
from worksheet_wizard.core.config import Settings
from worksheet_wizard.services.session_store import SessionStore
from worksheet_wizard.services.wizard import WizardController

API_BASE = "https://worksheet.test"
NETWORK_DOWN = object()


class FakeRemote:
    """Scripted responses keyed by (method, path); the last response of a route repeats."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Any) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def replace(self, method: str, path: str, *responses: Any) -> None:
        self.routes[(method, path)] = list(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not Found"})

        scripted = queue.pop(0) if len(queue) > 1 else queue[0]
        if scripted is NETWORK_DOWN:
            raise httpx.ConnectError("Connection refused", request=request)
        status_code, body = scripted
        if isinstance(body, (bytes, str)):
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def job_body(status: str, **data: Any) -> tuple[int, dict]:
    return 200, {"data": {"status": status, **data}}


def sample_worksheet() -> dict:
    return {
        "id": "ws-1",
        "board": {"id": "b1", "name": "CBSE"},
        "grade": {"id": "g5", "name": "Grade 5"},
        "subject": {"id": "s1", "name": "Science"},
        "topic": "Plants",
        "section": "A",
        "number_of_questions": 3,
        "status": "Completed",
        "questions": {
            "mcq_single_answer": [
                {
                    "question": "Which part of the plant makes food?",
                    "options": ["A. Root", "B. Leaf", "C. Stem", "D. Flower"],
                    "answer": "B",
                    "tags": {"learning_objectives": "Identify plant parts", "bloom": "remember", "difficulty": "easy"},
                    "explanations": [
                        {
                            "learning_objective": "Identify plant parts",
                            "explanation": "Leaves carry out photosynthesis.",
                            "key_concepts": ["photosynthesis", "chlorophyll"],
                            "common_mistakes": "Choosing the root",
                            "real_world_application": "Gardening",
                        }
                    ],
                }
            ],
            "short_answer": [
                {"question": "Name a gas plants release.", "answer": "Oxygen",
                 "tags": {"learning_objectives": ["Describe photosynthesis"], "bloom": "understand", "difficulty": "medium"}},
                {"question": "Why are leaves green?", "answer": "Chlorophyll"},
            ],
        },
    }


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    return Settings(
        worksheet_api_base=API_BASE,
        session_file=str(tmp_path / "session.json"),
        export_dir=str(tmp_path / "exports"),
        metadata_initial_delay=0,
        question_config_initial_delay=0,
        worksheet_initial_delay=0,
        poll_interval=0,
        poll_backoff_factor=1.0,
        poll_max_interval=0,
        poll_slow_after_attempts=3,
        poll_max_attempts=6,
    )


@pytest.fixture
def store(fast_settings: Settings, clock: FakeClock) -> SessionStore:
    return SessionStore(fast_settings.session_file, ttl_minutes=30, clock=clock)


@pytest.fixture
def api(remote: FakeRemote) -> WorksheetAPIClient:
    return WorksheetAPIClient(API_BASE, transport=remote.transport())


@pytest.fixture
def wizard(api: WorksheetAPIClient, store: SessionStore, fast_settings: Settings) -> WizardController:
    return WizardController(api, store, fast_settings)


@pytest.fixture
def catalog(remote: FakeRemote) -> FakeRemote:
    """Remote with a working login and a one-entry catalog."""
    remote.add("POST", "/token", (200, {"access_token": "tok-1"}))
    remote.add("GET", "/metadata/v1/board", (200, [{"id": "b1", "name": "CBSE"}]))
    remote.add("GET", "/metadata/v1/board/b1/grades", (200, [{"id": "g5", "name": "Grade 5"}]))
    remote.add("GET", "/metadata/v1/board/b1/grades/g5/subjects", (200, [{"id": "s1", "name": "Science"}]))
    return remote
