"""Supervisor for the long-lived runtime process speaking line-delimited JSON."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import shlex
import signal
from typing import Any, Callable, Sequence

from runtimebridge.contracts import NOTIFICATION_ERROR, NOTIFICATION_EVENT, NOTIFICATION_STATUS
from runtimebridge.errors import (
    RuntimeCallTimeoutError,
    RuntimeCommandError,
    RuntimeDisposedError,
    RuntimeExitedError,
    RuntimeNotRunningError,
    RuntimeSpawnError,
    RuntimeWriteError,
)
from runtimebridge.supervisor.config import DEFAULT_RUNTIME_COMMAND
from runtimebridge.supervisor.framing import (
    EventMessage,
    LineFramer,
    MalformedLine,
    ResponseMessage,
    decode_message,
    encode_request,
)
from runtimebridge.supervisor.models import Notification, PendingRequest, RuntimeStatus, utc_now_iso
from runtimebridge.supervisor.restart_policy import RestartPolicy

logger = logging.getLogger("runtimebridge.supervisor.runtime_process")

DEFAULT_CALL_TIMEOUT_SECONDS = 60.0
DEFAULT_KILL_GRACE_SECONDS = 1.5
READ_CHUNK_BYTES = 65536

NotificationListener = Callable[[Notification], None]


def _exit_reason(returncode: int) -> str:
    if returncode < 0:
        try:
            signal_name = signal.Signals(-returncode).name
        except ValueError:
            signal_name = str(-returncode)
        return f"Runtime process stopped by signal {signal_name}"
    return f"Runtime process exited with code {returncode}"


class RuntimeProcess:
    """Keep at most one runtime process alive and correlate calls with it.

    All state is owned by the event loop the supervisor runs on; nothing here
    is thread-safe.
    """

    def __init__(
        self,
        command: Sequence[str] | str = DEFAULT_RUNTIME_COMMAND,
        *,
        restart_policy: RestartPolicy | None = None,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("runtime command must be non-empty")
        self.restart_policy = restart_policy or RestartPolicy()
        self.call_timeout_seconds = call_timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

        self.status = RuntimeStatus.STOPPED
        self.restart_count = 0
        self.started_at: str | None = None
        self.last_event_at: str | None = None
        self.last_error: str | None = None

        self._process: asyncio.subprocess.Process | None = None
        self._framer = LineFramer()
        self._pending: dict[str, PendingRequest] = {}
        self._request_ids = itertools.count(1)
        self._listeners: list[NotificationListener] = []
        self._starting: asyncio.Task[None] | None = None
        self._restart_handle: asyncio.TimerHandle | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._io_tasks: set[asyncio.Task[None]] = set()
        self._spawned_at_loop_time: float | None = None
        self._consecutive_crashes = 0
        self._exiting_reason: str | None = None
        self._disposed = False

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def health(self) -> dict[str, Any]:
        """Return a side-effect-free snapshot of the supervisor state."""
        process = self._process
        return {
            "status": self.status.value,
            "pid": process.pid if process is not None else None,
            "restart_count": self.restart_count,
            "started_at": self.started_at,
            "last_event_at": self.last_event_at,
            "last_error": self.last_error,
        }

    def on_notification(self, listener: NotificationListener) -> Callable[[], None]:
        """Register ``listener`` and return a handle that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, payload: dict[str, Any], timestamp: str | None = None) -> None:
        notification = Notification(kind=kind, payload=payload, timestamp=timestamp or utc_now_iso())
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")

    def _set_status(self, status: RuntimeStatus, error: str | None = None) -> None:
        self.status = status
        if error:
            self.last_error = error
        kind = NOTIFICATION_ERROR if status == RuntimeStatus.ERRORED else NOTIFICATION_STATUS
        self._emit(kind, self.health())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def ensure_started(self) -> None:
        """Start the process unless it is running; join a spawn in flight."""
        if self._disposed:
            raise RuntimeDisposedError("Runtime process has been disposed")
        if self._process is not None:
            return
        if self._exiting_reason is not None:
            raise RuntimeExitedError(self._exiting_reason)
        if self._starting is None:
            self._starting = asyncio.get_running_loop().create_task(self._spawn())
        # Shielded so a cancelled waiter does not abort the spawn for the others.
        await asyncio.shield(self._starting)

    async def _spawn(self) -> None:
        try:
            self._set_status(RuntimeStatus.STARTING)
            logger.info("Starting runtime process: %s", shlex.join(self.command))
            try:
                process = await asyncio.create_subprocess_exec(
                    *self.command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                message = str(exc).strip() or "Failed to start runtime process"
                logger.error("Runtime process spawn failed: %s", message)
                self._set_status(RuntimeStatus.ERRORED, message)
                raise RuntimeSpawnError(message) from exc

            if self._disposed:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                raise RuntimeDisposedError("Runtime process has been disposed")

            loop = asyncio.get_running_loop()
            self._process = process
            self._framer = LineFramer()
            self.restart_count += 1
            self.started_at = utc_now_iso()
            self._spawned_at_loop_time = loop.time()
            stdout_task = loop.create_task(self._read_stdout(process, self._framer))
            self._track(stdout_task)
            self._track(loop.create_task(self._read_stderr(process)))
            self._track(loop.create_task(self._watch_exit(process, stdout_task)))
            logger.info("Runtime process running (pid=%s, restart_count=%s)", process.pid, self.restart_count)
            self._set_status(RuntimeStatus.RUNNING)
        finally:
            self._starting = None

    def _track(self, task: asyncio.Task[None]) -> None:
        self._io_tasks.add(task)
        task.add_done_callback(self._io_tasks.discard)

    async def _read_stdout(self, process: asyncio.subprocess.Process, framer: LineFramer) -> None:
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(READ_CHUNK_BYTES)
            if not chunk or self._disposed:
                return
            for line in framer.feed(chunk):
                self._handle_line(line)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            chunk = await process.stderr.read(READ_CHUNK_BYTES)
            if not chunk:
                return
            message = chunk.decode("utf-8", errors="replace").strip()
            if not message:
                continue
            self.last_error = message
            logger.warning("Runtime stderr: %s", message)
            self._emit(NOTIFICATION_ERROR, {"message": message, "source": "stderr"})

    async def _watch_exit(self, process: asyncio.subprocess.Process, stdout_task: asyncio.Task[None]) -> None:
        returncode = await process.wait()
        reason = _exit_reason(returncode)
        if self._disposed:
            with contextlib.suppress(Exception):
                await stdout_task
            self._fail_all_pending(RuntimeDisposedError("Runtime process has been disposed"))
            if self.status != RuntimeStatus.STOPPED:
                self._set_status(RuntimeStatus.STOPPED)
            return
        if process is not self._process:
            return

        loop = asyncio.get_running_loop()
        uptime = loop.time() - (self._spawned_at_loop_time or loop.time())
        if self.restart_policy.is_stable_run(uptime):
            self._consecutive_crashes = 1
        else:
            self._consecutive_crashes += 1

        # The handle is gone as soon as the process is; stdout may still drain.
        self._process = None
        self._exiting_reason = reason
        logger.warning("%s (pending=%d)", reason, len(self._pending))
        self._set_status(RuntimeStatus.ERRORED, reason)
        try:
            # Lines flushed before exit must still resolve their calls.
            with contextlib.suppress(Exception):
                await stdout_task
        finally:
            self._exiting_reason = None
        if self._disposed:
            return
        self._framer = LineFramer()
        self._fail_all_pending(RuntimeExitedError(reason))
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._disposed or self._restart_handle is not None:
            return
        delay = self.restart_policy.delay_seconds(
            restart_count=self.restart_count,
            consecutive_crashes=self._consecutive_crashes,
        )
        logger.info("Restarting runtime process in %.2fs", delay)
        self._restart_handle = asyncio.get_running_loop().call_later(delay, self._on_restart_timer)

    def _on_restart_timer(self) -> None:
        self._restart_handle = None
        if self._disposed:
            return
        self._restart_task = asyncio.get_running_loop().create_task(self._restart())

    async def _restart(self) -> None:
        try:
            await self.ensure_started()
        except RuntimeDisposedError:
            return
        except RuntimeSpawnError as exc:
            logger.warning("Runtime restart failed: %s", exc)
            self._schedule_restart()
        finally:
            self._restart_task = None

    async def dispose(self) -> None:
        """Stop the process for good: no restarts, pending calls failed."""
        self._disposed = True
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        restart_task = self._restart_task
        if restart_task is not None and restart_task is not asyncio.current_task():
            restart_task.cancel()
        self._fail_all_pending(RuntimeDisposedError("Runtime process has been disposed"))

        process = self._process
        self._process = None
        self._framer = LineFramer()
        if self.status != RuntimeStatus.STOPPED:
            self._set_status(RuntimeStatus.STOPPED)
        if process is None:
            return

        logger.info("Stopping runtime process (pid=%s)", process.pid)
        if process.stdin is not None:
            with contextlib.suppress(Exception):
                process.stdin.close()
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Runtime process ignored SIGTERM; sending SIGKILL (pid=%s)", process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        if self._io_tasks:
            _, still_running = await asyncio.wait(list(self._io_tasks), timeout=self.kill_grace_seconds)
            for task in still_running:
                task.cancel()

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #

    async def call(
        self,
        command: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send ``command`` and wait for its correlated response ``data``."""
        timeout_seconds = self.call_timeout_seconds if timeout is None else timeout
        await self.ensure_started()

        process = self._process
        if process is None or process.stdin is None:
            raise RuntimeNotRunningError("Runtime process is not running")

        request_id = f"req-{next(self._request_ids)}"
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(timeout_seconds, self._expire_pending, request_id, timeout_seconds)
        self._pending[request_id] = PendingRequest(
            id=request_id,
            command=command,
            future=future,
            timer=timer,
            deadline=loop.time() + timeout_seconds,
        )

        try:
            process.stdin.write(encode_request(request_id, command, params))
            await process.stdin.drain()
        except (OSError, RuntimeError) as exc:
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()
            if future.done():
                # Exit handling already failed the call; report that instead.
                return await future
            message = str(exc).strip() or f'Failed to write runtime command "{command}"'
            raise RuntimeWriteError(message) from exc

        try:
            return await future
        finally:
            entry = self._pending.get(request_id)
            if entry is not None and entry.future is future:
                del self._pending[request_id]
                entry.timer.cancel()

    def _expire_pending(self, request_id: str, timeout_seconds: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        timeout_ms = int(round(timeout_seconds * 1000))
        entry.future.set_exception(
            RuntimeCallTimeoutError(f'Runtime command "{entry.command}" timed out after {timeout_ms}ms')
        )

    def _fail_all_pending(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)

    # ------------------------------------------------------------------ #
    # Inbound messages
    # ------------------------------------------------------------------ #

    def _handle_line(self, line: str) -> None:
        message = decode_message(line)
        if message is None:
            logger.debug("Ignoring non-object JSON line from runtime")
        elif isinstance(message, MalformedLine):
            logger.warning("Malformed JSON line from runtime: %.200s", message.line)
            self._emit(
                NOTIFICATION_ERROR,
                {"message": "Malformed JSON line from runtime", "line": message.line},
            )
        elif isinstance(message, ResponseMessage):
            self._handle_response(message)
        elif isinstance(message, EventMessage):
            self._handle_event(message)

    def _handle_response(self, message: ResponseMessage) -> None:
        entry = self._pending.pop(message.id, None)
        if entry is None:
            logger.debug("Dropping response for unknown or expired request %s", message.id)
            return
        entry.timer.cancel()
        if entry.future.done():
            return
        if not message.success:
            error_text = message.error or f'Runtime command "{entry.command}" failed'
            entry.future.set_exception(RuntimeCommandError(error_text))
            return
        entry.future.set_result(message.data)

    def _handle_event(self, message: EventMessage) -> None:
        self.last_event_at = utc_now_iso()
        self._emit(
            NOTIFICATION_EVENT,
            {"event_type": message.event_type, "data": message.data, "raw": message.raw},
            timestamp=self.last_event_at,
        )
