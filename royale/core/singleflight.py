import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class SingleFlight:
    """Collapse concurrent calls for the same key into one execution.

    The first caller for a key runs the function; callers arriving while it is
    still running block and receive the same result (or exception). Once the
    call finishes the key is released and the next call runs again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls

    def do(self, key: Hashable, fn: Callable[..., Any], *args, **kwargs) -> Any:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            logger.debug("Joining in-flight call for %r", key)
            return future.result()

        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)
