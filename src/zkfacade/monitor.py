"""Action monitor: publishes completed facade operations to subscribers."""

import logging
import queue
import threading
from typing import Any, Callable, List, Optional, Tuple

from .models import ActionRecord, ActionType, payload_text

logger = logging.getLogger(__name__)

# Receives every action record, in emission order.
ActionListener = Callable[[ActionRecord], None]

DEFAULT_MAX_PENDING = 10000
DEFAULT_ENQUEUE_TIMEOUT = 0.1

# Seconds the idle worker waits before checking for shutdown.
_IDLE_POLL = 0.5


class LoggerActionListener:
    """Default subscriber that writes one log line per action."""

    def __call__(self, record: ActionRecord) -> None:
        server = getattr(record.client, "server", None)
        data = payload_text(record.data)
        logger.info(
            f"ZooKeeper event: type [{record.action_type.name}], server [{server}], "
            f"path [{record.path}], data [{data}]",
            extra={"zk_action": record.to_dict()},
        )


class _FlushMarker:
    """Queue item that signals when everything before it was dispatched."""

    def __init__(self):
        self.done = threading.Event()


_STOP = object()


class ActionMonitor:
    """
    Fans action records out to subscribers on one dedicated worker thread.

    trigger_action() only enqueues, so callers never wait on subscribers.
    Records are delivered in enqueue order; within a record, subscribers
    are called in subscription order. A failing subscriber is logged and
    skipped without affecting the others.
    """

    _instance: Optional["ActionMonitor"] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        max_pending: int = DEFAULT_MAX_PENDING,
        enqueue_timeout: float = DEFAULT_ENQUEUE_TIMEOUT,
    ):
        """
        Initialize the monitor and start its worker thread.

        Args:
            max_pending: Maximum number of records waiting for dispatch
            enqueue_timeout: Seconds trigger_action waits on a full queue
        """
        self.enqueue_timeout = enqueue_timeout
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_pending)
        self._subscribers: List[ActionListener] = []
        self._lock = threading.Lock()
        self._stopped = False

        self.default_listener = LoggerActionListener()
        self._subscribers.append(self.default_listener)

        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name="zookeeper-monitor-subscribe-thread-0",
        )
        self._thread.daemon = True
        self._thread.start()

    @classmethod
    def get_instance(cls) -> "ActionMonitor":
        """Get the process-wide monitor, creating it on first use."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @property
    def subscribers(self) -> Tuple[ActionListener, ...]:
        """Snapshot of the current subscribers."""
        with self._lock:
            return tuple(self._subscribers)

    def add_subscriber(self, listener: Optional[ActionListener]) -> bool:
        if listener is None:
            return False
        with self._lock:
            self._subscribers.append(listener)
        return True

    def remove_subscriber(self, listener: Optional[ActionListener]) -> bool:
        if listener is None:
            return False
        with self._lock:
            try:
                self._subscribers.remove(listener)
            except ValueError:
                return False
        return True

    def trigger_action(
        self,
        action_type: ActionType,
        client: Any,
        path: str,
        data: Any = None,
    ) -> bool:
        """
        Enqueue an action record for dispatch.

        Args:
            action_type: The kind of operation
            client: The handle that performed it
            path: Real path the operation targeted
            data: Value or bytes involved in the operation

        Returns:
            True if the record was enqueued, False if it was dropped
        """
        if self._stopped:
            logger.warning(f"Action monitor stopped, dropping {action_type.name} on {path}")
            return False

        record = ActionRecord(action_type=action_type, client=client, path=path, data=data)
        try:
            self._queue.put(record, timeout=self.enqueue_timeout)
        except queue.Full:
            logger.warning(f"Action queue full, dropping {action_type.name} on {path}")
            return False
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every record enqueued so far has been dispatched.

        Args:
            timeout: Maximum seconds to wait, None to wait forever

        Returns:
            True if the queue drained in time
        """
        marker = _FlushMarker()
        try:
            self._queue.put(marker, timeout=timeout)
        except queue.Full:
            return False
        return marker.done.wait(timeout)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """
        Dispatch pending records, then stop the worker thread.

        Waits at most timeout seconds to hand the stop signal to a full
        queue; the worker still exits by itself once the queue is empty.
        """
        if self._stopped:
            return
        self._stopped = True
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Action queue full at shutdown, worker will stop once drained")
            return
        self._thread.join(timeout=timeout)

    def _dispatch_loop(self) -> None:
        """Worker loop that delivers records to subscribers."""
        while True:
            try:
                item = self._queue.get(timeout=_IDLE_POLL)
            except queue.Empty:
                if self._stopped:
                    break
                continue
            if item is _STOP:
                break
            if isinstance(item, _FlushMarker):
                item.done.set()
                continue
            self._dispatch(item)

    def _dispatch(self, record: ActionRecord) -> None:
        for listener in self.subscribers:
            try:
                listener(record)
            except Exception:
                logger.exception(
                    f"Zookeeper action monitor, thread[{threading.current_thread().name}] "
                    f"subscriber {listener!r} failed on {record.action_type.name}"
                )
