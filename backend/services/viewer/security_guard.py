"""
Scoped anti-exfiltration countermeasures for the secure viewers.

A SecurityGuard owns the listeners of exactly one viewer. The host UI
forwards its window/document events to the guard while it is attached;
a handler returning True means the host should suppress the default
action. These are deterrents only; entitlement is enforced server-side.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from core.config import DEVTOOLS_POLL_INTERVAL_MS, DEVTOOLS_SIZE_THRESHOLD
from core.scheduling import Scheduler

logger = logging.getLogger(__name__)

CONTEXT_MENU_MESSAGE = "Right-click is disabled for security reasons"
DRAG_MESSAGE = "Drag and drop is disabled for security"
BLUR_MESSAGE = "Please stay focused on the assessment window"
HIDDEN_MESSAGE = "Assessment paused - window is not visible"
DEVTOOLS_MESSAGE = "Developer tools detected - please close them"
RECORDING_MESSAGE = "Screen recording detected! Content has been blurred for security."
GENERIC_MESSAGE = "Screenshots and screen recording are prohibited for this content."

CONTENT_BLUR_RADIUS_PX = 20


@dataclass(frozen=True)
class KeyEvent:
    """A keydown as seen by the host UI."""
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False


@dataclass(frozen=True)
class WindowSize:
    outer_width: int
    outer_height: int
    inner_width: int
    inner_height: int


KeyRule = Tuple[Callable[[KeyEvent], bool], str]


def _key(event: KeyEvent, name: str) -> bool:
    return event.key.lower() == name.lower()


# Rules for timed assessments
ASSESSMENT_KEY_RULES: List[KeyRule] = [
    (lambda e: _key(e, "PrintScreen"), "Screenshots are not allowed during assessment viewing"),
    (lambda e: _key(e, "F12"), "Developer tools are disabled for security"),
    (lambda e: e.ctrl and e.shift and _key(e, "I"), "Developer tools are disabled for security"),
    (lambda e: e.ctrl and e.shift and _key(e, "J"), "Developer tools are disabled for security"),
    (lambda e: e.ctrl and not e.shift and _key(e, "u"), "View source is disabled for security"),
    (lambda e: e.ctrl and not e.shift and _key(e, "s"), "Saving is not allowed during assessment"),
    (lambda e: e.ctrl and not e.shift and _key(e, "a"), "Text selection is disabled for security"),
    (lambda e: e.ctrl and not e.shift and _key(e, "c"), "Copying is not allowed during assessment"),
]

# Rules for protected notes and documents
DOCUMENT_KEY_RULES: List[KeyRule] = [
    (lambda e: _key(e, "PrintScreen"), GENERIC_MESSAGE),
    (lambda e: (e.meta or e.ctrl) and e.shift and _key(e, "S"), GENERIC_MESSAGE),
    (lambda e: _key(e, "F12"), GENERIC_MESSAGE),
    (lambda e: e.ctrl and e.shift and _key(e, "I"), GENERIC_MESSAGE),
    (lambda e: e.ctrl and e.shift and _key(e, "J"), GENERIC_MESSAGE),
    (lambda e: e.ctrl and _key(e, "U"), GENERIC_MESSAGE),
]


class SecurityGuard:
    """
    Per-viewer set of countermeasures with attach/release semantics.

    Args:
        on_warning: called with the warning text for the host to display
        key_rules: which key combinations to block
        scheduler: runs the optional devtools heuristic poll
        window_size: returns current window metrics for the heuristic
        blur_when_hidden: blur content while the page is hidden
        warn_on_blur: warn when the window loses focus
        context_menu_message: text shown when the context menu is blocked
        hidden_message: text shown when the page becomes hidden
        devtools_threshold: outer/inner size gap that suggests docked devtools
    """

    def __init__(
        self,
        on_warning: Callable[[str], None],
        key_rules: Optional[List[KeyRule]] = None,
        scheduler: Optional[Scheduler] = None,
        window_size: Optional[Callable[[], WindowSize]] = None,
        blur_when_hidden: bool = False,
        warn_on_blur: bool = True,
        context_menu_message: str = CONTEXT_MENU_MESSAGE,
        hidden_message: str = HIDDEN_MESSAGE,
        devtools_threshold: int = DEVTOOLS_SIZE_THRESHOLD,
        devtools_interval_ms: int = DEVTOOLS_POLL_INTERVAL_MS,
    ):
        self.on_warning = on_warning
        self.key_rules = key_rules if key_rules is not None else ASSESSMENT_KEY_RULES
        self.scheduler = scheduler
        self.window_size = window_size
        self.blur_when_hidden = blur_when_hidden
        self.warn_on_blur = warn_on_blur
        self.context_menu_message = context_menu_message
        self.hidden_message = hidden_message
        self.devtools_threshold = devtools_threshold
        self.devtools_interval_ms = devtools_interval_ms

        self.attached = False
        self.content_blurred = False
        self.devtools_open = False
        self._devtools_timer: Optional[int] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> "SecurityGuard":
        if self.attached:
            return self
        self.attached = True
        self.content_blurred = False
        self.devtools_open = False
        if self.scheduler is not None and self.window_size is not None:
            self._devtools_timer = self.scheduler.call_every(
                self.devtools_interval_ms / 1000.0, self.check_devtools
            )
        logger.debug("Security guard attached")
        return self

    def release(self) -> None:
        """Detach every handler and stop the devtools poll. Safe to call twice."""
        if not self.attached:
            return
        self.attached = False
        self.content_blurred = False
        if self._devtools_timer is not None and self.scheduler is not None:
            self.scheduler.cancel(self._devtools_timer)
        self._devtools_timer = None
        logger.debug("Security guard released")

    def __enter__(self) -> "SecurityGuard":
        return self.attach()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def blur_radius(self) -> int:
        return CONTENT_BLUR_RADIUS_PX if self.content_blurred else 0

    def _warn(self, message: str) -> None:
        try:
            self.on_warning(message)
        except Exception:
            logger.exception("Security warning handler failed")

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_context_menu(self) -> bool:
        if not self.attached:
            return False
        self._warn(self.context_menu_message)
        return True

    def handle_key(self, event: KeyEvent) -> bool:
        if not self.attached:
            return False
        for matches, message in self.key_rules:
            if matches(event):
                self._warn(message)
                return True
        return False

    def handle_drag_start(self) -> bool:
        if not self.attached:
            return False
        self._warn(DRAG_MESSAGE)
        return True

    def handle_select_start(self) -> bool:
        return self.attached

    def handle_blur(self) -> None:
        if self.attached and self.warn_on_blur:
            self._warn(BLUR_MESSAGE)

    def handle_visibility_change(self, hidden: bool) -> None:
        if not self.attached:
            return
        if hidden:
            if self.blur_when_hidden:
                self.content_blurred = True
            self._warn(self.hidden_message)
        else:
            self.content_blurred = False

    def check_devtools(self) -> bool:
        """
        Sample window metrics once; warn the first time devtools look open.

        Returns:
            Whether devtools currently appear to be open.
        """
        if not self.attached or self.window_size is None:
            return False
        size = self.window_size()
        is_open = (
            size.outer_height - size.inner_height > self.devtools_threshold
            or size.outer_width - size.inner_width > self.devtools_threshold
        )
        if is_open and not self.devtools_open:
            self._warn(DEVTOOLS_MESSAGE)
        self.devtools_open = is_open
        return is_open


def assessment_guard(on_warning: Callable[[str], None], **kwargs) -> SecurityGuard:
    """Guard for the timed assessment viewer."""
    return SecurityGuard(on_warning, key_rules=ASSESSMENT_KEY_RULES, **kwargs)


def document_guard(on_warning: Callable[[str], None], prevent_recording: bool = True, **kwargs) -> SecurityGuard:
    """Guard for protected notes: blurs content while hidden when recording is prevented."""
    return SecurityGuard(
        on_warning,
        key_rules=DOCUMENT_KEY_RULES,
        blur_when_hidden=prevent_recording,
        warn_on_blur=False,
        context_menu_message=GENERIC_MESSAGE,
        hidden_message=RECORDING_MESSAGE,
        **kwargs,
    )
