"""Drive the greply executable and normalize what it reports.

The executable is always started directly (``asyncio.create_subprocess_exec``)
with an argument vector, so query and target strings never pass through a
shell. Both output streams are drained concurrently against a shared byte
budget; overrunning it kills the child and raises
:class:`~greply.errors.OutputTooLargeError` rather than truncating.

Exit codes follow grep: ``0`` means matches, ``1`` with no output at all means
no matches, anything else is a failure.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from greply.config import (
    DEFAULT_HELP_MAX_OUTPUT_BYTES,
    DEFAULT_MAX_OUTPUT_BYTES,
    RunnerConfig,
    get_config,
)
from greply.errors import (
    ExecutionError,
    OutputTooLargeError,
    ProcessTimeoutError,
    SpawnError,
    SuppressedExecutionError,
)
from greply.options import SearchOptions, build_args

logger = logging.getLogger(__name__)

__all__ = [
    "GreplyRunner",
    "OutcomeKind",
    "ProcessRunner",
    "SearchOutcome",
    "SearchResult",
    "get_help",
    "normalize_outcome",
    "run_search",
]

NO_MATCHES_EXIT_CODE = 1
_CHUNK_SIZE = 64 * 1024
_REAP_TIMEOUT = 5.0
_KILLPG = getattr(os, "killpg", None)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    NO_MATCHES = "no_matches"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class SearchResult:
    stdout: str
    stderr: str
    exit_code: int | None = None


@dataclass(frozen=True, slots=True)
class SearchOutcome:
    """Tagged result of a search. ``error`` is only set for a suppressed failure."""

    kind: OutcomeKind
    result: SearchResult
    error: SuppressedExecutionError | None = None

    @property
    def ok(self) -> bool:
        return self.kind is not OutcomeKind.FAILURE

    @property
    def stdout(self) -> str:
        return self.result.stdout

    @property
    def stderr(self) -> str:
        return self.result.stderr

    @property
    def exit_code(self) -> int | None:
        return self.result.exit_code


def normalize_outcome(
    result: SearchResult,
    *,
    executable: str,
    suppress_errors: bool = False,
) -> SearchOutcome:
    """Classify a finished invocation as success, no matches, or failure.

    A failure raises :class:`ExecutionError` unless ``suppress_errors`` is set,
    in which case the captured streams come back on a ``FAILURE`` outcome. An
    empty stderr is replaced by the error message so the caller can see why.
    """
    code = result.exit_code
    if code == 0:
        return SearchOutcome(OutcomeKind.SUCCESS, result)
    if code == NO_MATCHES_EXIT_CODE and not result.stdout and not result.stderr:
        return SearchOutcome(
            OutcomeKind.NO_MATCHES,
            SearchResult(stdout="", stderr="", exit_code=NO_MATCHES_EXIT_CODE),
        )

    error = ExecutionError(
        _describe_exit(executable, code),
        executable=executable,
        exit_code=code,
        stdout=result.stdout,
        stderr=result.stderr,
    )
    logger.warning(
        "greply invocation failed",
        extra={"executable": executable, "exit_code": code, "suppressed": suppress_errors},
    )
    if not suppress_errors:
        raise error

    suppressed = SuppressedExecutionError.from_error(error)
    return SearchOutcome(
        OutcomeKind.FAILURE,
        SearchResult(stdout=result.stdout, stderr=result.stderr or str(suppressed), exit_code=code),
        error=suppressed,
    )


class ProcessRunner:
    """Spawn the executable and capture its output within a byte budget.

    ``executable`` is the default resolved once by the configuration layer;
    every call may override it. ``timeout`` is in seconds, ``None`` waits
    indefinitely.
    """

    def __init__(
        self,
        executable: str,
        *,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        help_max_output_bytes: int = DEFAULT_HELP_MAX_OUTPUT_BYTES,
        timeout: float | None = None,
    ) -> None:
        if not executable:
            raise ValueError("executable must be a non-empty string")
        self.executable = executable
        self.max_output_bytes = max_output_bytes
        self.help_max_output_bytes = help_max_output_bytes
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: RunnerConfig | None = None) -> ProcessRunner:
        runner_config = config if config is not None else get_config().runner
        return cls(
            runner_config.executable,
            max_output_bytes=runner_config.max_output_bytes,
            help_max_output_bytes=runner_config.help_max_output_bytes,
            timeout=runner_config.timeout,
        )

    async def execute(
        self,
        args: Sequence[str],
        *,
        executable: str | None = None,
        max_output_bytes: int | None = None,
        timeout: float | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> SearchResult:
        """Run the executable with ``args`` and return its raw exit status and streams."""
        command = executable or self.executable
        limit = max_output_bytes if max_output_bytes is not None else self.max_output_bytes
        deadline = timeout if timeout is not None else self.timeout
        logger.debug(
            "Starting greply",
            extra={"executable": command, "argc": len(args), "timeout": deadline},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=_KILLPG is not None,
            )
        except OSError as exc:
            logger.warning("Could not start greply", extra={"executable": command, "error": str(exc)})
            raise SpawnError(command, exc.strerror or str(exc)) from exc

        budget = _OutputBudget(limit, command)
        try:
            async with asyncio.timeout(deadline):
                stdout, stderr = await _communicate(process, budget)
                exit_code = await process.wait()
        except TimeoutError as exc:
            await _terminate(process)
            logger.warning("greply timed out", extra={"executable": command, "timeout": deadline})
            raise ProcessTimeoutError(executable=command, timeout=deadline) from exc
        except OutputTooLargeError:
            await _terminate(process)
            logger.warning("greply output too large", extra={"executable": command, "limit": limit})
            raise
        except BaseException:
            await _terminate(process)
            raise

        logger.debug("greply finished", extra={"executable": command, "exit_code": exit_code})
        return SearchResult(stdout=_decode(stdout), stderr=_decode(stderr), exit_code=exit_code)

    async def help(self, *, executable: str | None = None, timeout: float | None = None) -> SearchResult:
        """Run the executable without arguments and return its usage text.

        Usage output commonly comes with a nonzero status, so the status is
        reported but never treated as a failure.
        """
        command = executable or self.executable
        result = await self.execute(
            [],
            executable=command,
            max_output_bytes=self.help_max_output_bytes,
            timeout=timeout,
        )
        if result.exit_code and not result.stderr:
            result = replace(result, stderr=_describe_exit(command, result.exit_code))
        return result


class GreplyRunner:
    """High-level entry point: options in, tagged outcome out."""

    def __init__(
        self,
        process_runner: ProcessRunner,
        *,
        cwd: str | os.PathLike[str] | None = None,
    ) -> None:
        self.process_runner = process_runner
        self.cwd = cwd

    @classmethod
    def from_config(
        cls,
        config: RunnerConfig | None = None,
        *,
        cwd: str | os.PathLike[str] | None = None,
    ) -> GreplyRunner:
        return cls(ProcessRunner.from_config(config), cwd=cwd)

    async def search(
        self,
        options: SearchOptions | Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> SearchOutcome:
        if not isinstance(options, SearchOptions):
            options = SearchOptions.from_mapping(options)
        args = build_args(options, cwd=self.cwd)
        command = options.executable or self.process_runner.executable
        result = await self.process_runner.execute(
            args,
            executable=command,
            timeout=timeout,
            cwd=self.cwd,
        )
        return normalize_outcome(
            result,
            executable=command,
            suppress_errors=options.suppress_errors,
        )

    async def help(
        self, *, executable: str | None = None, timeout: float | None = None
    ) -> SearchResult:
        return await self.process_runner.help(executable=executable, timeout=timeout)


async def run_search(
    options: SearchOptions | Mapping[str, Any],
    *,
    timeout: float | None = None,
) -> SearchOutcome:
    """Search with the process-wide default configuration."""
    return await GreplyRunner.from_config().search(options, timeout=timeout)


async def get_help(
    *, executable: str | None = None, timeout: float | None = None
) -> SearchResult:
    """Fetch usage text with the process-wide default configuration."""
    return await GreplyRunner.from_config().help(executable=executable, timeout=timeout)


class _OutputBudget:
    def __init__(self, limit: int, executable: str) -> None:
        self.limit = limit
        self.executable = executable
        self.used = 0

    def consume(self, size: int) -> None:
        self.used += size
        if self.used > self.limit:
            raise OutputTooLargeError(executable=self.executable, limit=self.limit)


async def _drain(stream: asyncio.StreamReader | None, budget: _OutputBudget) -> bytes:
    if stream is None:
        return b""
    chunks: list[bytes] = []
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            return b"".join(chunks)
        budget.consume(len(chunk))
        chunks.append(chunk)


async def _communicate(
    process: asyncio.subprocess.Process,
    budget: _OutputBudget,
) -> tuple[bytes, bytes]:
    readers = [
        asyncio.ensure_future(_drain(process.stdout, budget)),
        asyncio.ensure_future(_drain(process.stderr, budget)),
    ]
    try:
        done, _pending = await asyncio.wait(readers, return_when=asyncio.FIRST_EXCEPTION)
        errors = [reader.exception() for reader in readers if reader in done]
        for error in errors:
            if error is not None:
                raise error
        return readers[0].result(), readers[1].result()
    finally:
        for reader in readers:
            if not reader.done():
                reader.cancel()


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill the child's whole process group, then reap it within a bounded wait.

    Wrapper scripts leave grandchildren holding the output pipes; killing only
    the direct child would leave ``wait`` blocked on those pipes.
    """
    try:
        if _KILLPG is not None:
            _KILLPG(process.pid, signal.SIGKILL)
        elif process.returncode is None:
            process.kill()
    except (ProcessLookupError, PermissionError):
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
    try:
        await asyncio.wait_for(process.wait(), _REAP_TIMEOUT)
    except TimeoutError:
        logger.warning("greply did not exit after kill", extra={"pid": process.pid})


def _describe_exit(executable: str, code: int | None) -> str:
    if code is None:
        return f"{executable} did not report an exit status"
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = f"signal {-code}"
        return f"{executable} was terminated by {name}"
    return f"{executable} exited with status {code}"


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
