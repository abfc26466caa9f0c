"""
HTTP client for the EduVault REST API.

Used by the client-side flows (entitlement, secure viewer, subscription
payment, content moderation). Mirrors the frontends' axios instance: a
base URL, a bearer token on every request, and an "auth:unauthorized"
notification whenever the server answers 401.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from core.config import API_PREFIX, API_TIMEOUT_SECONDS, BACKEND_URL
from core.scheduling import CancelToken

logger = logging.getLogger(__name__)

UNAUTHORIZED_EVENT = "auth:unauthorized"


class ApiError(Exception):
    """Raised when the API answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class TransportError(ApiError):
    """Network failure before any HTTP status was received."""
    pass


class UnauthorizedError(ApiError):
    pass


class ForbiddenError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class RequestCancelled(Exception):
    """The caller went away; the response (if any) was discarded."""
    pass


_STATUS_ERRORS = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class EduVaultClient:
    """Client for the EduVault backend."""

    def __init__(
        self,
        base_url: str = BACKEND_URL,
        token: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = API_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = http_client or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._unauthorized_listeners: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def on_unauthorized(self, listener: Callable[[], None]) -> Callable[[], None]:
        """
        Register a listener for the auth:unauthorized event.

        Returns:
            A function that removes the listener again.
        """
        self._unauthorized_listeners.append(listener)

        def remove():
            if listener in self._unauthorized_listeners:
                self._unauthorized_listeners.remove(listener)

        return remove

    def _dispatch_unauthorized(self) -> None:
        self.token = None
        for listener in list(self._unauthorized_listeners):
            try:
                listener()
            except Exception:
                logger.exception("%s listener failed", UNAUTHORIZED_EVENT)

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}{path if path.startswith('/') else '/' + path}"

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Tuple[str, bytes, str]]] = None,
        allow_status: Iterable[int] = (),
        cancel_token: Optional[CancelToken] = None,
    ) -> httpx.Response:
        """
        Send a request and map error statuses to exceptions.

        Statuses listed in allow_status are returned to the caller instead
        of raising (the frontends' `validateStatus: status < 500`), except
        401, which always triggers the unauthorized event.
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled(f"{method} {path} cancelled before sending")

        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.client.request(
                method,
                self._url(path),
                json=json,
                params=params,
                data=data,
                files=files,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.warning("Network error on %s %s: %s", method, path, e)
            raise TransportError(f"Network error: {e}") from e

        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled(f"{method} {path} finished after cancellation")

        status = response.status_code
        if status == 401:
            self._dispatch_unauthorized()
            raise UnauthorizedError(_error_message(response), status_code=status)

        if status >= 400 and status not in set(allow_status):
            error_cls = _STATUS_ERRORS.get(status, ApiError)
            payload = None
            try:
                payload = response.json()
            except ValueError:
                pass
            raise error_cls(_error_message(response), status_code=status, payload=payload)

        return response

    def _get_json(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, **kwargs).json()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        body = self.request("POST", f"{API_PREFIX}/auth/login", json={"email": email, "password": password}).json()
        self.token = body.get("token")
        return body

    def register(self, **fields) -> Dict[str, Any]:
        body = self.request("POST", f"{API_PREFIX}/auth/register", json=fields).json()
        self.token = body.get("token")
        return body

    def me(self) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/auth/me")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_institutions(self) -> List[Dict[str, Any]]:
        return self._get_json(f"{API_PREFIX}/institutions").get("institutions", [])

    def get_institution(self, institution_id: str) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/institutions/{institution_id}")["institution"]

    def list_courses(self, institution_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"institution": institution_id} if institution_id else None
        return self._get_json(f"{API_PREFIX}/courses", params=params).get("courses", [])

    def get_course(self, course_id: str) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/courses/{course_id}")["course"]

    def list_resources(self, **filters) -> List[Dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._get_json(f"{API_PREFIX}/resources", params=params).get("resources", [])

    def get_course_content(
        self,
        course_id: str,
        year: Optional[int] = None,
        semester: Optional[int] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        params = {k: v for k, v in {"year": year, "semester": semester}.items() if v is not None}
        return self._get_json(
            f"{API_PREFIX}/student/course/{course_id}/content",
            params=params or None,
            cancel_token=cancel_token,
        )

    # ------------------------------------------------------------------
    # Assessments (admin)
    # ------------------------------------------------------------------

    def list_admin_assessments(self) -> List[Dict[str, Any]]:
        return self._get_json(f"{API_PREFIX}/admin/assessments").get("assessments", [])

    def list_my_assessments(self) -> List[Dict[str, Any]]:
        return self._get_json(f"{API_PREFIX}/admin/my-assessments").get("assessments", [])

    def upload_assessment(self, fields: Dict[str, Any], filename: str, content: bytes, content_type: str) -> Dict[str, Any]:
        form = {k: str(v) for k, v in fields.items() if v is not None}
        return self.request(
            "POST",
            f"{API_PREFIX}/upload/assessment",
            data=form,
            files={"file": (filename, content, content_type)},
        ).json()

    def publish_assessment(self, kind: str, assessment_id: str, status: str) -> Dict[str, Any]:
        return self.request(
            "PATCH", f"{API_PREFIX}/admin/{kind}/{assessment_id}/publish", json={"status": status}
        ).json()

    def delete_assessment(self, kind: str, assessment_id: str) -> Dict[str, Any]:
        return self.request("DELETE", f"{API_PREFIX}/admin/{kind}/{assessment_id}").json()

    # ------------------------------------------------------------------
    # Content moderation
    # ------------------------------------------------------------------

    def get_content_status(self) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/admin/content-status")

    def delete_content_items(self, items: List[Dict[str, Any]]) -> httpx.Response:
        """Bulk delete; 207/400/403 come back as responses for the caller to reconcile."""
        return self.request(
            "DELETE",
            f"{API_PREFIX}/admin/content-status",
            json={"items": items},
            allow_status=(207, 400, 403),
        )

    # ------------------------------------------------------------------
    # Secure images
    # ------------------------------------------------------------------

    def get_secure_metadata(self, kind: str, assessment_id: str, cancel_token: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._get_json(
            f"{API_PREFIX}/secure-images/metadata/{kind}/{assessment_id}", cancel_token=cancel_token
        )

    def get_secure_file(self, kind: str, assessment_id: str, cancel_token: Optional[CancelToken] = None) -> Tuple[bytes, str]:
        response = self.request("GET", f"{API_PREFIX}/secure-images/{kind}/{assessment_id}", cancel_token=cancel_token)
        return response.content, response.headers.get("content-type", "application/octet-stream")

    def log_access(self, assessment_id: str, kind: str, action: str, timestamp: str) -> Dict[str, Any]:
        return self.request(
            "POST",
            f"{API_PREFIX}/secure-images/log-access",
            json={
                "assessmentId": assessment_id,
                "assessmentType": kind,
                "action": action,
                "timestamp": timestamp,
            },
        ).json()

    def file_url(self, filename: str) -> str:
        """URL for embedding a protected file; the token travels as a query param."""
        url = f"{self.base_url}{API_PREFIX}/upload/file/{filename}"
        return f"{url}?token={self.token}" if self.token else url

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def initiate_subscription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{API_PREFIX}/subscription/initiate", json=payload).json()

    def get_subscription_status(self, subscription_id: str, cancel_token: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/subscription/status/{subscription_id}", cancel_token=cancel_token)

    def query_subscription(self, subscription_id: str, cancel_token: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._get_json(f"{API_PREFIX}/subscription/query/{subscription_id}", cancel_token=cancel_token)

    # ------------------------------------------------------------------
    # Student downloads
    # ------------------------------------------------------------------

    def register_download(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{API_PREFIX}/student-downloads", json=payload).json()

    def list_downloads(self) -> List[Dict[str, Any]]:
        return self._get_json(f"{API_PREFIX}/student-downloads").get("downloads", [])

    def delete_download(self, download_id: str) -> Dict[str, Any]:
        return self.request("DELETE", f"{API_PREFIX}/student-downloads/{download_id}").json()
