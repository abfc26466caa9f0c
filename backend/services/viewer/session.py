"""
Secure viewer sessions for timed assessments and protected documents.

A SecureViewerSession walks idle -> metadata_loaded -> viewing -> ended
for one assessment. It owns its timers, its SecurityGuard and a
CancelToken, so closing the viewer stops everything it started and
discards responses that arrive afterwards.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from core.api_client import (
    ApiError,
    EduVaultClient,
    NotFoundError,
    RequestCancelled,
    UnauthorizedError,
)
from core.config import ENABLE_DEVTOOLS_HEURISTIC, VIEWER_TIME_UP_GRACE_SECONDS
from core.scheduling import CancelToken, Scheduler
from models.viewer_models import AssessmentMetadata, ContentHandle, SecurityWarning, ViewerState
from services.viewer.security_guard import SecurityGuard, WindowSize, assessment_guard, document_guard

logger = logging.getLogger(__name__)

METADATA_NOT_AVAILABLE = (
    "This secure assessment is not yet available. "
    "Please check back later or contact your instructor."
)
METADATA_FAILED = "Failed to load assessment. Please check your connection and try again."
METADATA_DENIED = "Assessment not found or access denied"
FILE_UNAVAILABLE = "The secure assessment file is unavailable. Please contact support for assistance."
SESSION_EXPIRED = "Your session has expired. Please refresh the page and try again."
FILE_FAILED = "Failed to load assessment image. Please try again or contact support."
TIME_UP_MESSAGE = "Time is up! The assessment viewing session has ended."

START_VIEWING = "start_viewing"
END_VIEWING = "end_viewing"


class SessionStateError(RuntimeError):
    """Raised when an operation is not valid in the session's current state."""
    pass


def format_time(seconds: int) -> str:
    """Render a countdown as H:MM:SS, or MM:SS under an hour."""
    seconds = max(int(seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SecureViewerSession:
    """
    One timed viewing of a CAT or past exam.

    Args:
        client: API client carrying the student's token
        kind: assessment type as used in the URL (cats, pastExams, ...)
        assessment_id: 24-hex assessment id
        scheduler: runs the 1 Hz countdown and the time-up grace period
        on_warning: called for every security or time-up warning
        on_close: called once the session has ended
        window_size: window metrics for the optional devtools heuristic
    """

    def __init__(
        self,
        client: EduVaultClient,
        kind: str,
        assessment_id: str,
        scheduler: Scheduler,
        on_warning: Optional[Callable[[SecurityWarning], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        window_size: Optional[Callable[[], WindowSize]] = None,
        enable_devtools_heuristic: bool = ENABLE_DEVTOOLS_HEURISTIC,
        time_up_grace_seconds: float = VIEWER_TIME_UP_GRACE_SECONDS,
    ):
        self.client = client
        self.kind = kind
        self.assessment_id = assessment_id
        self.scheduler = scheduler
        self.on_warning = on_warning
        self.on_close = on_close
        self.time_up_grace_seconds = time_up_grace_seconds

        self.state = ViewerState.IDLE
        self.metadata: Optional[AssessmentMetadata] = None
        self.time_remaining = 0
        self.error: Optional[str] = None
        self.warnings: List[SecurityWarning] = []
        self.content: Optional[ContentHandle] = None
        self.loading = False
        self.cancel_token = CancelToken()

        self.guard: SecurityGuard = assessment_guard(
            self._security_warning,
            scheduler=scheduler if enable_devtools_heuristic else None,
            window_size=window_size if enable_devtools_heuristic else None,
        )

        self._countdown_timer: Optional[int] = None
        self._grace_timer: Optional[int] = None
        self._time_up_fired = False
        self._closed_notified = False

    @property
    def viewing(self) -> bool:
        return self.state == ViewerState.VIEWING

    @property
    def current_warning(self) -> Optional[SecurityWarning]:
        return self.warnings[-1] if self.warnings else None

    def _emit_warning(self, warning: SecurityWarning) -> None:
        self.warnings.append(warning)
        if self.on_warning is not None:
            self.on_warning(warning)

    def _security_warning(self, message: str) -> None:
        self._emit_warning(SecurityWarning(message))

    def dismiss_error(self) -> None:
        self.error = None

    # ------------------------------------------------------------------
    # idle -> metadata_loaded
    # ------------------------------------------------------------------

    def load_metadata(self) -> Optional[AssessmentMetadata]:
        """
        Fetch the assessment's metadata and arm the countdown length.

        Failures are captured in `error`; nothing is retried.
        """
        if self.state not in (ViewerState.IDLE, ViewerState.METADATA_LOADED):
            raise SessionStateError(f"Cannot load metadata while {self.state.value}")

        self.loading = True
        self.error = None
        try:
            body = self.client.get_secure_metadata(self.kind, self.assessment_id, cancel_token=self.cancel_token)
        except RequestCancelled:
            logger.debug("Metadata for %s/%s discarded after close", self.kind, self.assessment_id)
            return None
        except NotFoundError:
            self.error = METADATA_NOT_AVAILABLE
            return None
        except ApiError as e:
            logger.warning("Error fetching assessment %s/%s: %s", self.kind, self.assessment_id, e)
            self.error = METADATA_FAILED
            return None
        finally:
            self.loading = False

        if not body.get("success") or not body.get("data"):
            self.error = METADATA_DENIED
            return None

        self.metadata = AssessmentMetadata.from_dict(body["data"])
        self.time_remaining = self.metadata.duration_minutes * 60
        self.state = ViewerState.METADATA_LOADED
        return self.metadata

    # ------------------------------------------------------------------
    # metadata_loaded -> viewing
    # ------------------------------------------------------------------

    def start_viewing(self) -> bool:
        """
        Fetch the protected file, log the start and begin the countdown.

        Returns:
            True once viewing has started, False when the fetch failed.

        Raises:
            SessionStateError: if metadata is not loaded or a viewing is
                already running or starting
        """
        if self.state == ViewerState.VIEWING or self.loading:
            raise SessionStateError("A viewing session is already active")
        if self.state != ViewerState.METADATA_LOADED:
            raise SessionStateError(f"Cannot start viewing while {self.state.value}")

        self.loading = True
        self.error = None
        try:
            data, content_type = self.client.get_secure_file(
                self.kind, self.assessment_id, cancel_token=self.cancel_token
            )
        except RequestCancelled:
            return False
        except NotFoundError:
            self.error = FILE_UNAVAILABLE
            return False
        except UnauthorizedError:
            self.error = SESSION_EXPIRED
            return False
        except ApiError as e:
            logger.warning("Error loading secure file %s/%s: %s", self.kind, self.assessment_id, e)
            self.error = FILE_FAILED
            return False
        finally:
            self.loading = False

        self.content = ContentHandle(content_type=content_type, _data=data)
        self.state = ViewerState.VIEWING
        self._time_up_fired = False
        self.guard.attach()

        self._log(START_VIEWING)

        self._countdown_timer = self.scheduler.call_every(1.0, self.tick)
        logger.info("Viewing started for %s/%s (%ss)", self.kind, self.assessment_id, self.time_remaining)
        return True

    def tick(self) -> None:
        """Advance the countdown by one second."""
        if self.state != ViewerState.VIEWING or self.time_remaining <= 0:
            return
        self.time_remaining -= 1
        if self.time_remaining <= 0:
            self.time_remaining = 0
            self._stop_countdown()
            self.handle_time_up()

    def handle_time_up(self) -> None:
        """Warn once and end the session after the grace period."""
        if self._time_up_fired:
            return
        self._time_up_fired = True
        self._emit_warning(SecurityWarning(TIME_UP_MESSAGE, terminal=True))
        self._grace_timer = self.scheduler.call_later(self.time_up_grace_seconds, self.end_viewing)

    # ------------------------------------------------------------------
    # viewing -> ended
    # ------------------------------------------------------------------

    def end_viewing(self) -> None:
        """Log the end, revoke the content and release every listener. Idempotent."""
        if self.state == ViewerState.ENDED:
            return

        if self.state == ViewerState.VIEWING:
            self._log(END_VIEWING)

        self._teardown()
        self.state = ViewerState.ENDED
        self._notify_closed()

    def close(self) -> None:
        """Unmount path: end any active viewing and cancel outstanding work."""
        self.end_viewing()
        self.cancel_token.cancel()

    def _teardown(self) -> None:
        self._stop_countdown()
        if self._grace_timer is not None:
            self.scheduler.cancel(self._grace_timer)
            self._grace_timer = None
        if self.content is not None:
            self.content.revoke()
            self.content = None
        self.guard.release()

    def _stop_countdown(self) -> None:
        if self._countdown_timer is not None:
            self.scheduler.cancel(self._countdown_timer)
            self._countdown_timer = None

    def _notify_closed(self) -> None:
        if self._closed_notified or self.on_close is None:
            return
        self._closed_notified = True
        self.on_close()

    def _log(self, action: str) -> None:
        try:
            self.client.log_access(self.assessment_id, self.kind, action, _now_iso())
        except ApiError as e:
            logger.warning("Error logging %s for %s/%s: %s", action, self.kind, self.assessment_id, e)


class ProtectedDocumentView:
    """
    Embedded view of a protected notes file.

    The file is addressed by a tokenised URL so it can be embedded
    directly; only the first warning is surfaced to the user.
    """

    def __init__(
        self,
        client: EduVaultClient,
        filename: str,
        title: str = "",
        prevent_screenshot: bool = True,
        prevent_recording: bool = True,
        on_warning: Optional[Callable[[str], None]] = None,
    ):
        self.client = client
        self.filename = filename
        self.title = title
        self.prevent_screenshot = prevent_screenshot
        self.prevent_recording = prevent_recording
        self.on_warning = on_warning
        self.warning: Optional[str] = None
        self.guard = document_guard(self._show_warning, prevent_recording=prevent_recording)

    @property
    def url(self) -> str:
        return self.client.file_url(self.filename)

    @property
    def secured(self) -> bool:
        return self.guard.attached

    def open(self) -> "ProtectedDocumentView":
        if self.prevent_screenshot or self.prevent_recording:
            self.guard.attach()
        return self

    def close(self) -> None:
        self.guard.release()

    def __enter__(self) -> "ProtectedDocumentView":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _show_warning(self, message: str) -> None:
        if self.warning is not None:
            return
        self.warning = message
        if self.on_warning is not None:
            self.on_warning(message)
