"""In-memory response store for the active session."""

import threading
from typing import Dict, List, Optional, Tuple

from models import QuestionKind, Response, ResponsePayload


class ResponseStore:
    """Map of question id -> Response with upsert semantics.

    At most one response per question; the latest write wins and nothing is
    merged. Clearing removes the entry, so ``len(store)`` is always the
    answered count. Not persisted.
    """

    def __init__(self) -> None:
        self._responses: Dict[str, Response] = {}
        self._lock = threading.Lock()

    def upsert(self, question_id: str, kind: QuestionKind, payload: ResponsePayload) -> Response:
        response = Response(question_id=question_id, kind=kind, payload=payload)
        with self._lock:
            # Re-inserting keeps first-answered order stable for snapshots.
            self._responses[question_id] = response
        return response

    def clear(self, question_id: str) -> bool:
        """Remove a response. Returns True if one was present."""
        with self._lock:
            return self._responses.pop(question_id, None) is not None

    def get(self, question_id: str) -> Optional[Response]:
        with self._lock:
            return self._responses.get(question_id)

    def snapshot(self) -> Tuple[Response, ...]:
        """Responses present right now, as an immutable tuple."""
        with self._lock:
            return tuple(self._responses.values())

    def answered_ids(self) -> List[str]:
        with self._lock:
            return list(self._responses)

    def reset(self) -> None:
        with self._lock:
            self._responses.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._responses)

    def __contains__(self, question_id: object) -> bool:
        with self._lock:
            return question_id in self._responses
