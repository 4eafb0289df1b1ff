"""
Worksheet API Client
HTTP client for the remote worksheet-generation API
"""
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from worksheet_wizard.models.jobs import JobKind, JobStatus
from worksheet_wizard.models.session import FormData
from worksheet_wizard.models.worksheet import CatalogItem

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."
NETWORK_ERROR_MESSAGE = "Network error"

JOB_ENDPOINTS = {
    JobKind.METADATA: "/worksheet/v1/metadata/{job_id}",
    JobKind.QUESTION_CONFIG: "/worksheet/v1/question-config/{job_id}",
    JobKind.WORKSHEET: "/worksheet/v1/generate-worksheet/{job_id}",
}

AuthExpiredHook = Callable[[str], Union[None, Awaitable[None]]]


class WorksheetAPIError(Exception):
    """Base exception for worksheet API errors"""
    pass


class NetworkError(WorksheetAPIError):
    """Raised when a request never completed"""
    pass


class AuthExpiredError(WorksheetAPIError):
    """Raised when an authenticated call comes back with HTTP 401"""
    pass


class APIValidationError(WorksheetAPIError):
    """Raised when the API rejects a request; carries the server message"""
    pass


class LoginFailedError(WorksheetAPIError):
    """Raised when the token endpoint rejects the credentials"""
    pass


class JobNotFoundError(WorksheetAPIError):
    """Raised when a job status endpoint answers 404"""
    pass


def job_status_endpoint(kind: JobKind, job_id: str) -> str:
    return JOB_ENDPOINTS[kind].format(job_id=job_id)


class WorksheetAPIClient:
    """
    Client for the worksheet-generation API

    Every authenticated response goes through the expiry check before the
    caller looks at the body: a 401 runs the registered hook and raises
    AuthExpiredError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        on_auth_expired: Optional[AuthExpiredHook] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the client

        Args:
            base_url: Base URL of the worksheet API
            timeout: Request timeout in seconds
            on_auth_expired: Called with the rejected token on any 401
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.on_auth_expired = on_auth_expired
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport
        )
        logger.info(f"🔌 Worksheet API client initialized: {self.base_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        **kwargs: Any
    ) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"📤 {method} {path}")

        try:
            response = await self.client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"❌ Request failed: {method} {path}: {e}")
            raise NetworkError(NETWORK_ERROR_MESSAGE) from e

        if token is not None:
            await self._check_expiry(response, token)

        return response

    async def _check_expiry(self, response: httpx.Response, token: str) -> None:
        """Treat HTTP 401 as token expiry"""
        if response.status_code != 401:
            return

        logger.warning(f"⚠️ Token rejected by {response.request.url.path}")
        if self.on_auth_expired is not None:
            result = self.on_auth_expired(token)
            if inspect.isawaitable(result):
                await result
        raise AuthExpiredError(SESSION_EXPIRED_MESSAGE)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _detail_message(body: Any, fallback: str) -> str:
        """Pull `detail[0].msg` out of an error body"""
        if isinstance(body, dict):
            detail = body.get("detail")
            if isinstance(detail, list) and detail and isinstance(detail[0], dict):
                msg = detail[0].get("msg")
                if msg:
                    return str(msg)
        return fallback

    async def _list(self, path: str, token: str, what: str) -> List[CatalogItem]:
        response = await self._request("GET", path, token=token)
        body = self._json(response)
        if not response.is_success or not isinstance(body, list):
            raise APIValidationError(f"Failed to load {what}")
        return [CatalogItem.model_validate(item) for item in body if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> str:
        """
        Exchange credentials for an access token

        Raises:
            LoginFailedError: With the server message or "Login failed"
            NetworkError: If the request never completed
        """
        response = await self._request(
            "POST",
            "/token",
            data={
                "username": username,
                "password": password,
                "grant_type": "password",
            }
        )
        body = self._json(response)

        if response.is_success and isinstance(body, dict) and body.get("access_token"):
            logger.info(f"✓ Logged in as {username}")
            return body["access_token"]

        message = body.get("message") if isinstance(body, dict) else None
        raise LoginFailedError(message or "Login failed")

    async def list_boards(self, token: str) -> List[CatalogItem]:
        return await self._list("/metadata/v1/board", token, "boards")

    async def list_grades(self, token: str, board_id: str) -> List[CatalogItem]:
        return await self._list(f"/metadata/v1/board/{board_id}/grades", token, "grades")

    async def list_subjects(self, token: str, board_id: str, grade_id: str) -> List[CatalogItem]:
        return await self._list(
            f"/metadata/v1/board/{board_id}/grades/{grade_id}/subjects",
            token,
            "subjects"
        )

    async def submit_metadata_job(self, token: str, form: FormData) -> str:
        """
        Start metadata generation

        Sent as multipart form data; section and topic are only included when
        set. Returns the job id found at `detail[0].id`.
        """
        fields = [
            ("board", form.board),
            ("grade", form.grade),
            ("subject", form.subject),
            ("number_of_questions", str(form.num_questions)),
            ("question_distribution", json.dumps(form.question_dist)),
            ("difficulty_level_distribution", json.dumps(form.difficulty_dist)),
            ("bloom_taxonomy_distribution", json.dumps(form.bloom_dist)),
        ]
        if form.section:
            fields.append(("section", form.section))
        if form.topic:
            fields.append(("topic", form.topic))

        response = await self._request(
            "POST",
            "/worksheet/v1/metadata",
            token=token,
            files=[(name, (None, value)) for name, value in fields]
        )
        body = self._json(response)

        job_id = None
        if isinstance(body, dict):
            detail = body.get("detail")
            if isinstance(detail, list) and detail and isinstance(detail[0], dict):
                job_id = detail[0].get("id")

        if not response.is_success or not job_id:
            raise APIValidationError(self._detail_message(body, "Failed to generate metadata"))

        logger.info(f"📨 Metadata job accepted: {job_id}")
        return str(job_id)

    async def submit_question_config_job(
        self,
        token: str,
        job_id: str,
        subject_matter: Any,
        learning_standards: Any
    ) -> None:
        response = await self._request(
            "POST",
            job_status_endpoint(JobKind.QUESTION_CONFIG, job_id),
            token=token,
            json={
                "subject_matter": subject_matter,
                "learning_standards": learning_standards,
            }
        )
        if not response.is_success:
            raise APIValidationError(
                self._detail_message(self._json(response), "Failed to submit config")
            )
        logger.info(f"📨 Question config job accepted: {job_id}")

    async def submit_worksheet_job(
        self,
        token: str,
        job_id: str,
        question_config: Dict[str, Any]
    ) -> None:
        response = await self._request(
            "POST",
            job_status_endpoint(JobKind.WORKSHEET, job_id),
            token=token,
            json=question_config
        )
        if not response.is_success:
            raise APIValidationError(
                self._detail_message(self._json(response), "Failed to generate worksheet")
            )
        logger.info(f"📨 Worksheet job accepted: {job_id}")

    async def fetch_job_status(self, token: str, endpoint: str) -> JobStatus:
        """
        Check a job

        Raises:
            JobNotFoundError: On 404
            WorksheetAPIError: On any other non-success status
            ValueError: If the body is not a `{data: {...}}` object
        """
        response = await self._request("GET", endpoint, token=token)

        if response.status_code == 404:
            raise JobNotFoundError(f"Job not found: {endpoint}")
        if not response.is_success:
            raise WorksheetAPIError(f"Status check failed with HTTP {response.status_code}")

        return JobStatus.from_body(response.json())
