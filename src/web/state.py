import asyncio
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from errors import LiveClassifierError, MalformedPredictionSet
from models.prediction import AggregatedResult
from models.status import SessionState


class SharedState:
    """
    State shared between the session controller and the web server.

    Subscribes to the controller's result, state and diagnostic callbacks,
    keeps the latest values for polling clients and fans every event out to
    connected WebSocket clients as a JSON-ready dict.
    """

    def __init__(self, max_diagnostics: int = 50, queue_size: int = 32):
        self._lock = threading.Lock()
        self.latest_result: Optional[AggregatedResult] = None
        self.state: SessionState = SessionState.IDLE
        self.diagnostics: Deque[Dict[str, Any]] = deque(maxlen=max_diagnostics)
        self.start_time = time.time()
        self._queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()
        self._unsubscribe: List[Callable[[], None]] = []

    def attach(self, controller) -> None:
        """Start listening to a SessionController."""
        self.state = controller.state
        self.latest_result = controller.result
        self._unsubscribe = [
            controller.add_result_callback(self.on_result),
            controller.add_state_callback(self.on_state),
            controller.add_diagnostic_callback(self.on_diagnostic),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # Controller callbacks

    def on_result(self, result: AggregatedResult) -> None:
        with self._lock:
            self.latest_result = result
        self._publish({"type": "result", **result.to_dict()})

    def on_state(self, state: SessionState) -> None:
        with self._lock:
            self.state = state
            if state is SessionState.STARTING:
                self.latest_result = None
        self._publish({"type": "state", "state": state.value})

    def on_diagnostic(self, error: LiveClassifierError) -> None:
        entry = {
            "type": "diagnostic",
            "kind": type(error).__name__,
            "message": str(error),
            "problems": list(error.problems) if isinstance(error, MalformedPredictionSet) else [],
            "timestamp": time.time(),
        }
        with self._lock:
            self.diagnostics.append(entry)
        self._publish(entry)

    # Polling views

    def get_latest_result(self) -> Optional[AggregatedResult]:
        with self._lock:
            return self.latest_result

    def get_diagnostics_copy(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.diagnostics)

    # WebSocket fan-out

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _publish(self, message: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            # Slow clients lose their oldest message instead of blocking the loop.
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(message)
