import logging
import time
from typing import Callable


class TimerHandle:
    """Cancellation token for one scheduled callback."""

    def __init__(self, name: str, delay: float):
        self.name = name
        self.delay = delay
        self.deadline = time.time() + delay
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class StageScheduler:
    """Run callbacks after a delay on Socket.IO background tasks.

    - Works under every Flask-SocketIO async mode (threading, eventlet,
      gevent) because sleeping goes through ``socketio.sleep``
    - A cancelled handle never fires; callers still re-check their own
      state when the callback runs, since cancel can race the wake-up
    - ``spawn`` is fire-and-forget work with no delay (queue refills)
    """

    def __init__(self, socketio, logger=None, heartbeat_sec: int = 0):
        self._socketio = socketio
        self._logger = logger or logging.getLogger(__name__)
        self._heartbeat_sec = heartbeat_sec

    def call_later(self, delay: float, callback: Callable, *args, name: str = 'timer') -> TimerHandle:
        handle = TimerHandle(name, delay)
        self._socketio.start_background_task(self._worker, handle, callback, args)
        return handle

    def spawn(self, fn: Callable, *args) -> None:
        self._socketio.start_background_task(self._run, fn, args)

    def _run(self, fn, args):
        try:
            fn(*args)
        except Exception:
            self._logger.exception(f"[task-error] {getattr(fn, '__name__', fn)} raised")

    def _worker(self, handle: TimerHandle, callback: Callable, args: tuple) -> None:
        hb = self._heartbeat_sec
        if hb and hb > 0:
            slept = 0.0
            while slept < handle.delay and not handle.cancelled:
                step = min(hb, handle.delay - slept)
                self._socketio.sleep(step)
                slept += step
                self._logger.info(f"[timer-heartbeat] {handle.name} remaining={max(0, handle.delay - slept)}s")
        else:
            self._socketio.sleep(handle.delay)
        if handle.cancelled:
            return
        self._run(callback, args)
