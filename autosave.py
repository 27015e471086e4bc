"""Periodic draft saves of the in-progress responses."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from api_client import ApiClient, ApiError
from models import Response, serialize_response

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    response_count: int = 0
    saved_at: Optional[datetime] = None
    error: Optional[str] = None


class Autosaver:
    """Posts a draft of the response store every ``interval`` seconds.

    A failed save is reported as a failed SaveResult and logged; it never
    touches session state. ``should_save`` is checked before each save so
    nothing is sent once the session has left InProgress.
    """

    def __init__(
        self,
        api: ApiClient,
        test_id: str,
        snapshot: Callable[[], Tuple[Response, ...]],
        interval: float,
        should_save: Callable[[], bool] = lambda: True,
    ):
        self.api = api
        self.test_id = test_id
        self.interval = interval
        self._snapshot = snapshot
        self._should_save = should_save
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[SaveResult] = None
        self.failures = 0

    def start(self) -> None:
        if self.interval <= 0 or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="autosave", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            if not self._should_save():
                continue
            try:
                self.save_now()
            except Exception:
                logger.exception("Autosave crashed; will retry next interval")

    def save_now(self) -> SaveResult:
        responses = self._snapshot()
        body = {
            "responses": [serialize_response(r) for r in responses],
            "savedAt": datetime.now().isoformat(),
        }
        try:
            self.api.save_draft(self.test_id, body)
        except ApiError as e:
            self.failures += 1
            logger.warning("Autosave failed (%d so far): %s", self.failures, e)
            result = SaveResult(ok=False, response_count=len(responses), error=str(e))
        else:
            logger.debug("Autosaved %d responses", len(responses))
            result = SaveResult(ok=True, response_count=len(responses), saved_at=datetime.now())
        self.last_result = result
        return result

    def stop(self) -> None:
        self._stop_event.set()
        if (
            self._thread
            and self._thread.is_alive()
            and self._thread is not threading.current_thread()
        ):
            self._thread.join(timeout=2)
