"""Local node process supervision.

State machine:

    NotSpawned --spawn--> Spawned --(process exits)--> Exited
    Spawned --shutdown(graceful)--> SignaledInterrupt --(wait resolves)--> Exited
    Spawned --shutdown(!graceful)--> SignaledKill --(wait resolves)--> Exited
    Spawned --crash--> SignaledAbort --(wait resolves)--> Exited

Exited is terminal. Each output stream is drained by its own task into its own
file; a capture task ends at end-of-stream, which is not synchronized with the
exit-status wait handle.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import BinaryIO

from corecommander.core.domain import SupervisorState
from corecommander.core.errors import InvalidStateError
from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)


async def capture_stream(stream: asyncio.StreamReader, out: BinaryIO, label: str) -> int:
    """Copy `stream` into `out` line by line, flushing after every line.

    Lines longer than the reader limit are copied in pieces. The stream is
    always read to end-of-stream; after a failed write the remaining output is
    discarded. Closes `out` once the stream ends.

    Returns:
        Number of chunks written

    Raises:
        OSError: a write to `out` failed, raised once the stream is drained
    """
    written = 0
    write_error: OSError | None = None
    try:
        while True:
            at_eof = False
            try:
                chunk = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # end of stream; keep a final unterminated line
                chunk, at_eof = e.partial, True
            except asyncio.LimitOverrunError as e:
                chunk = await stream.readexactly(e.consumed)

            if chunk and write_error is None:
                try:
                    out.write(chunk)
                    out.flush()
                    written += 1
                except OSError as e:
                    write_error = e
                    logger.error(
                        "Output capture write failed, discarding remaining output",
                        extra={"event": LogEvent.CAPTURE_FAILED, "stream": label, "error": str(e)},
                    )
            if at_eof:
                break
    finally:
        out.close()

    if write_error is not None:
        raise write_error

    logger.debug(
        "Output capture finished",
        extra={"event": LogEvent.CAPTURE_FINISHED, "stream": label, "chunks": written},
    )
    return written


class ProcessSupervisor:
    """Spawns one node process, probes its liveness and signals it."""

    def __init__(
        self,
        executable: Path,
        working_dir: Path,
        stdout_path: Path,
        stderr_path: Path,
        stream_limit: int = 2**16,
    ) -> None:
        self._executable = executable
        self._working_dir = working_dir
        self._stdout_path = stdout_path
        self._stderr_path = stderr_path
        self._stream_limit = stream_limit

        self._state = SupervisorState.NOT_SPAWNED
        self._pid: int | None = None
        self._wait_task: asyncio.Task[int] | None = None
        self._capture_tasks: list[asyncio.Task[int]] = []

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def stdout_path(self) -> Path:
        return self._stdout_path

    @property
    def stderr_path(self) -> Path:
        return self._stderr_path

    @property
    def pid(self) -> int | None:
        """Process id; retained after exit for diagnostics."""
        return self._pid

    @property
    def wait_handle(self) -> asyncio.Task[int] | None:
        """Task resolving to the exit code once the process terminates."""
        return self._wait_task

    @property
    def exit_code(self) -> int | None:
        if self._wait_task is None or not self._wait_task.done():
            return None
        return self._wait_task.result()

    @property
    def capture_done(self) -> bool:
        return all(task.done() for task in self._capture_tasks)

    async def spawn(self, *args: str) -> int:
        """Start the executable in the working directory with output capture.

        Raises:
            InvalidStateError: the process was already spawned
        """
        if self._state is not SupervisorState.NOT_SPAWNED:
            raise InvalidStateError(f"Process already spawned (pid {self._pid})")

        stdout_file = self._stdout_path.open("wb")
        stderr_file = self._stderr_path.open("wb")
        try:
            process = await asyncio.create_subprocess_exec(
                str(self._executable),
                *args,
                cwd=self._working_dir,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self._stream_limit,
            )
        except BaseException:
            stdout_file.close()
            stderr_file.close()
            raise

        assert process.stdout is not None and process.stderr is not None
        self._pid = process.pid
        self._state = SupervisorState.SPAWNED
        self._capture_tasks = [
            asyncio.create_task(capture_stream(process.stdout, stdout_file, "stdout")),
            asyncio.create_task(capture_stream(process.stderr, stderr_file, "stderr")),
        ]
        self._wait_task = asyncio.create_task(self._wait_for_exit(process))

        logger.info(
            "Spawned node process",
            extra={
                "event": LogEvent.PROCESS_SPAWNED,
                "pid": self._pid,
                "executable": str(self._executable),
                "args": list(args),
            },
        )
        return self._pid

    async def _wait_for_exit(self, process: asyncio.subprocess.Process) -> int:
        exit_code = await process.wait()
        self._state = SupervisorState.EXITED
        logger.info(
            "Node process exited",
            extra={"event": LogEvent.PROCESS_EXITED, "pid": process.pid, "exit_code": exit_code},
        )
        return exit_code

    def is_running(self) -> bool:
        """True only if spawned, not yet reaped, and a signal-0 probe succeeds."""
        if self._pid is None:
            return False
        if self._wait_task is not None and self._wait_task.done():
            return False
        try:
            os.kill(self._pid, 0)
        except ProcessLookupError:
            return False
        return True

    async def wait(self) -> int:
        """Block until the process has terminated and return its exit code.

        Raises:
            InvalidStateError: the process was never spawned
        """
        if self._wait_task is None:
            raise InvalidStateError("Process was never spawned")
        return await asyncio.shield(self._wait_task)

    async def wait_for_capture(self, timeout: float | None = None) -> bool:
        """Wait for both capture tasks to reach end-of-stream.

        Returns:
            True if both finished within the timeout without a write failure
        """
        if not self._capture_tasks:
            return True
        done, pending = await asyncio.wait(self._capture_tasks, timeout=timeout)

        failed = [task for task in done if not task.cancelled() and task.exception() is not None]
        for task in failed:
            logger.error(
                "Output capture failed",
                extra={
                    "event": LogEvent.CAPTURE_FAILED,
                    "pid": self._pid,
                    "error": str(task.exception()),
                },
            )
        return not pending and not failed

    def _send(self, sig: signal.Signals, state: SupervisorState) -> None:
        assert self._pid is not None
        self._state = state
        try:
            os.kill(self._pid, sig)
        except ProcessLookupError:
            # exited between the liveness probe and the signal
            return
        logger.info(
            "Sent signal to node process",
            extra={"event": LogEvent.SIGNAL_SENT, "pid": self._pid, "signal": sig.name},
        )

    async def shutdown(self, graceful: bool = True) -> bool:
        """Interrupt (graceful) or kill the process and wait for its exit.

        No timeout is imposed; callers needing a bound wrap this call.

        Returns:
            True if the process was not running or exited with status 0
        """
        if not self.is_running():
            return True

        if graceful:
            self._send(signal.SIGINT, SupervisorState.SIGNALED_INTERRUPT)
        else:
            self._send(signal.SIGKILL, SupervisorState.SIGNALED_KILL)

        return await self.wait() == 0

    def crash(self) -> None:
        """Send SIGABRT to simulate an ungraceful termination."""
        if not self.is_running():
            logger.warning(
                "Crash requested but node process is not running",
                extra={"event": LogEvent.SIGNAL_SENT, "pid": self._pid},
            )
            return
        self._send(signal.SIGABRT, SupervisorState.SIGNALED_ABORT)
