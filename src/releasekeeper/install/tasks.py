"""
Background work units for installation operations.

Every mutating installation operation runs on one serial worker thread, so
there is never more than one writer on the install root or the archive cache.
Callers get a WorkUnit back that exposes progress, cancellation and the
eventual result or error; completion listeners are told about every finished
unit.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from releasekeeper.exceptions import ReleasekeeperError
from releasekeeper.log_utils import logger
from releasekeeper.release.model import Release, ReleaseIdentifier

if TYPE_CHECKING:
    from .manager import InstallationManager

INSTALL = "install"
REMOVE = "remove"

CompletionListener = Callable[[str, ReleaseIdentifier, Any], None]


class CancelToken:
    """Cooperative cancellation flag, polled by long-running operations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ProgressListener:
    """
    Receives progress from a running operation.

    `progress` is an integer percentage (0-100). When the total size is
    unknown, only `bytes_transferred` advances. Callbacks are invoked on the
    worker thread with the listener itself as the only argument.
    """

    def __init__(
        self,
        callback: Optional[Callable[["ProgressListener"], None]] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.progress = 0
        self.bytes_transferred = 0
        self.cancel_token = cancel_token or CancelToken()
        self._callbacks: List[Callable[["ProgressListener"], None]] = []
        if callback is not None:
            self._callbacks.append(callback)

    def add_callback(self, callback: Callable[["ProgressListener"], None]) -> None:
        self._callbacks.append(callback)

    def update(self, progress: int) -> None:
        self.progress = max(0, min(100, int(progress)))
        self._fire()

    def update_bytes(self, transferred: int) -> None:
        self.bytes_transferred = transferred
        self._fire()

    def _fire(self) -> None:
        for callback in self._callbacks:
            callback(self)

    def cancel(self) -> None:
        self.cancel_token.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_token.is_cancelled


class WorkUnit:
    """A submitted operation: `{progress, cancel(), result-or-error}`."""

    def __init__(
        self,
        kind: str,
        identifier: ReleaseIdentifier,
        future: "Future[Any]",
        progress: ProgressListener,
    ):
        self.kind = kind
        self.identifier = identifier
        self.progress = progress
        self._future = future

    def cancel(self) -> None:
        """
        Request cancellation.

        A queued unit never starts. A running download stops at the next chunk
        boundary; a running removal is not interrupted.
        """
        self.progress.cancel()
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the outcome.

        Raises:
            ReleasekeeperError: The error the operation failed with.
            concurrent.futures.CancelledError: If the unit was cancelled before it started.
            concurrent.futures.TimeoutError: If `timeout` elapsed first.
        """
        return self._future.result(timeout)


class InstallationWorker:
    """Single-thread queue for install and remove operations."""

    def __init__(self, manager: "InstallationManager"):
        self.manager = manager
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="installation")
        self._listeners: List[CompletionListener] = []
        self._units: List[WorkUnit] = []
        self._lock = threading.Lock()

    def add_completion_listener(self, listener: CompletionListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, kind: str, identifier: ReleaseIdentifier, outcome: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(kind, identifier, outcome)

    def _run(self, kind: str, identifier: ReleaseIdentifier, operation: Callable[[], Any]) -> Any:
        try:
            outcome = operation()
        except ReleasekeeperError as e:
            logger.error(f"{kind.capitalize()} of {identifier} failed: {e}")
            self._notify(kind, identifier, e)
            raise
        except Exception as e:
            logger.exception(f"{kind.capitalize()} of {identifier} failed unexpectedly")
            self._notify(kind, identifier, e)
            raise
        self._notify(kind, identifier, outcome)
        return outcome

    def _submit(
        self,
        kind: str,
        identifier: ReleaseIdentifier,
        operation: Callable[[ProgressListener], Any],
        progress: Optional[ProgressListener],
    ) -> WorkUnit:
        listener = progress or ProgressListener()
        future = self._executor.submit(self._run, kind, identifier, lambda: operation(listener))
        unit = WorkUnit(kind, identifier, future, listener)
        with self._lock:
            self._units = [u for u in self._units if not u.done()]
            self._units.append(unit)
        logger.debug(f"Queued {kind} of {identifier}")
        return unit

    def submit_install(self, release: Release, progress: Optional[ProgressListener] = None) -> WorkUnit:
        """Queue download and installation of `release`; the unit's result is an InstallResult."""
        return self._submit(
            INSTALL,
            release.id,
            lambda listener: self.manager.install(release, listener),
            progress,
        )

    def submit_remove(
        self, identifier: ReleaseIdentifier, progress: Optional[ProgressListener] = None
    ) -> WorkUnit:
        """Queue removal of an installed release; the unit's result is None."""
        return self._submit(
            REMOVE,
            identifier,
            lambda listener: self.manager.remove(identifier),
            progress,
        )

    def pending(self) -> List[WorkUnit]:
        with self._lock:
            return [u for u in self._units if not u.done()]

    def shutdown(self, wait: bool = True) -> None:
        """Cancel queued and running units, then stop the worker thread."""
        for unit in self.pending():
            unit.cancel()
        self._executor.shutdown(wait=wait)

