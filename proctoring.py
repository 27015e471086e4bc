"""Best-effort environment lockdown and integrity-event logging.

Camera access gates the start of a session. Full-screen is opportunistic:
failing to enter it is logged and recorded, never fatal. Events are kept
in memory and attached to the submission payload as metadata.
"""

import glob
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console

import config

logger = logging.getLogger(__name__)

CAMERA_DENIED_MESSAGE = (
    "Camera access is required to start this test. "
    "Allow camera access and try again."
)


class PermissionDeniedError(Exception):
    """Raised when a required device permission is refused."""


class MonitoringEventType(str, Enum):
    TAB_SWITCH = "TAB_SWITCH"
    WINDOW_BLUR = "WINDOW_BLUR"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"
    COPY = "COPY"
    PASTE = "PASTE"
    CONTEXT_MENU = "CONTEXT_MENU"
    KEYBOARD_SHORTCUT = "KEYBOARD_SHORTCUT"
    CAMERA_DISABLED = "CAMERA_DISABLED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


DEFAULT_SEVERITY = {
    MonitoringEventType.TAB_SWITCH: Severity.HIGH,
    MonitoringEventType.WINDOW_BLUR: Severity.MEDIUM,
    MonitoringEventType.FULLSCREEN_EXIT: Severity.HIGH,
    MonitoringEventType.COPY: Severity.MEDIUM,
    MonitoringEventType.PASTE: Severity.MEDIUM,
    MonitoringEventType.CONTEXT_MENU: Severity.MEDIUM,
    MonitoringEventType.KEYBOARD_SHORTCUT: Severity.MEDIUM,
    MonitoringEventType.CAMERA_DISABLED: Severity.CRITICAL,
    MonitoringEventType.SUSPICIOUS_ACTIVITY: Severity.HIGH,
}


@dataclass(frozen=True)
class MonitoringEvent:
    id: str
    event_type: MonitoringEventType
    severity: Severity
    timestamp: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


# ---------------------------------------------------------------------------
# Device access
# ---------------------------------------------------------------------------

class CameraAccess:
    """Acquires camera access. ``request`` raises PermissionDeniedError."""

    def request(self) -> None:
        raise NotImplementedError

    def release(self) -> None:
        pass


class DeviceCameraAccess(CameraAccess):
    """Checks that a readable video device exists (``/dev/video*``).

    ``consent`` is asked first, when given; refusing it counts as a denial.
    """

    def __init__(self, pattern: str = "/dev/video*", consent: Optional[Callable[[], bool]] = None):
        self.pattern = pattern
        self._consent = consent

    def request(self) -> None:
        if self._consent is not None and not self._consent():
            raise PermissionDeniedError(CAMERA_DENIED_MESSAGE)
        devices = sorted(glob.glob(self.pattern))
        if not devices:
            raise PermissionDeniedError("No camera was found on this device.")
        if not any(os.access(d, os.R_OK) for d in devices):
            raise PermissionDeniedError("Camera access was denied by the operating system.")
        logger.info("Camera available at %s", devices[0])


class CallbackCameraAccess(CameraAccess):
    """Delegates the decision to the front-end (a consent prompt, a browser capture)."""

    def __init__(self, grant: Callable[[], bool], denied_message: str = CAMERA_DENIED_MESSAGE):
        self._grant = grant
        self._denied_message = denied_message

    def request(self) -> None:
        if not self._grant():
            raise PermissionDeniedError(self._denied_message)


class FullscreenMode:
    def enter(self) -> bool:
        return False

    def exit(self) -> None:
        pass


class TerminalFullscreen(FullscreenMode):
    """Uses the terminal's alternate screen as the full-screen surface."""

    def __init__(self, console: Console):
        self.console = console
        self._active = False

    def enter(self) -> bool:
        self._active = self.console.set_alt_screen(True)
        return self._active

    def exit(self) -> None:
        if self._active:
            self.console.set_alt_screen(False)
            self._active = False


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class ProctoringMonitor:
    def __init__(
        self,
        camera: Optional[CameraAccess] = None,
        fullscreen: Optional[FullscreenMode] = None,
        require_camera: bool = config.REQUIRE_CAMERA,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.camera = camera
        self.fullscreen = fullscreen or FullscreenMode()
        self.require_camera = require_camera
        self.camera_status = "disabled"   # enabled | disabled | error
        self.is_fullscreen = False
        self._clock = clock
        self._events: List[MonitoringEvent] = []
        self._recording = True
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Forget recorded events and resume recording for a new session."""
        with self._lock:
            self._events = []
            self._recording = True

    def request_camera(self) -> Optional[str]:
        """Acquire the camera. Returns None on success, else a message for the learner."""
        if self.camera is None:
            if self.require_camera:
                self.camera_status = "error"
                self.record(MonitoringEventType.CAMERA_DISABLED, error="No camera available")
                return CAMERA_DENIED_MESSAGE
            return None
        try:
            self.camera.request()
        except PermissionDeniedError as e:
            self.camera_status = "error"
            self.record(MonitoringEventType.CAMERA_DISABLED, error=str(e))
            if self.require_camera:
                return str(e) or CAMERA_DENIED_MESSAGE
            logger.warning("Camera unavailable, continuing without it: %s", e)
            return None
        self.camera_status = "enabled"
        return None

    def request_fullscreen(self) -> bool:
        try:
            entered = self.fullscreen.enter()
        except Exception as e:
            logger.warning("Failed to enter fullscreen: %s", e)
            entered = False
        if not entered:
            logger.info("Fullscreen not available; continuing without it")
            self.record(MonitoringEventType.FULLSCREEN_EXIT, error="Failed to enter fullscreen")
        self.is_fullscreen = entered
        return entered

    def record(
        self,
        event_type: MonitoringEventType,
        severity: Optional[Severity] = None,
        **metadata: Any,
    ) -> Optional[MonitoringEvent]:
        with self._lock:
            if not self._recording:
                return None
            event = MonitoringEvent(
                id=uuid.uuid4().hex,
                event_type=event_type,
                severity=severity or DEFAULT_SEVERITY[event_type],
                timestamp=self._clock().isoformat(),
                metadata=metadata,
            )
            self._events.append(event)
        logger.info("Monitoring event %s (%s)", event.event_type.value, event.severity.value)
        return event

    def tab_switched(self) -> Optional[MonitoringEvent]:
        return self.record(MonitoringEventType.TAB_SWITCH, tabSwitchCount=self.tab_switches + 1)

    def window_blurred(self) -> Optional[MonitoringEvent]:
        return self.record(MonitoringEventType.WINDOW_BLUR)

    def fullscreen_exited(self, **metadata: Any) -> Optional[MonitoringEvent]:
        self.is_fullscreen = False
        return self.record(MonitoringEventType.FULLSCREEN_EXIT, **metadata)

    @property
    def tab_switches(self) -> int:
        with self._lock:
            return sum(1 for e in self._events if e.event_type is MonitoringEventType.TAB_SWITCH)

    @property
    def violations(self) -> int:
        with self._lock:
            return sum(1 for e in self._events if e.severity in (Severity.HIGH, Severity.CRITICAL))

    def events(self) -> Tuple[MonitoringEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def event_payload(self) -> Tuple[Dict[str, Any], ...]:
        return tuple(e.to_json() for e in self.events())

    def stop(self) -> None:
        """Stop recording and release devices. Safe to call twice."""
        with self._lock:
            self._recording = False
        if self.camera is not None:
            self.camera.release()
        self.fullscreen.exit()
        self.is_fullscreen = False
        self.camera_status = "disabled"
