"""Exception hierarchy shared by the runner, installer, and configuration layers."""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "ConfigError",
    "ExecutionError",
    "GreplyError",
    "InstallAlreadyExists",
    "InstallError",
    "InstallNotFound",
    "InstallOtherIO",
    "InstallPermissionDenied",
    "OutputTooLargeError",
    "ProcessTimeoutError",
    "SpawnError",
    "SuppressedExecutionError",
    "ValidationError",
]


class GreplyError(RuntimeError):
    """Base class for every error raised by this package."""


class ConfigError(GreplyError):
    """Raised when the configuration cannot be loaded."""


class ValidationError(GreplyError, ValueError):
    """Raised when search options are malformed. Nothing has been spawned yet."""


class SpawnError(GreplyError):
    """Raised when the executable could not be started at all."""

    def __init__(self, executable: str, message: str) -> None:
        super().__init__(f"Failed to start {executable}: {message}")
        self.executable = executable


class ExecutionError(GreplyError):
    """A completed (or killed) invocation that did not satisfy the exit-code contract.

    The message combines the exit context with both captured streams; the raw
    streams and exit code stay available for programmatic inspection.
    """

    def __init__(
        self,
        reason: str,
        *,
        executable: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(_format_failure(reason, stdout, stderr))
        self.reason = reason
        self.executable = executable
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class SuppressedExecutionError(ExecutionError):
    """Same condition as ExecutionError, attached to the outcome instead of raised."""

    @classmethod
    def from_error(cls, error: ExecutionError) -> SuppressedExecutionError:
        return cls(
            error.reason,
            executable=error.executable,
            exit_code=error.exit_code,
            stdout=error.stdout,
            stderr=error.stderr,
        )


class OutputTooLargeError(ExecutionError):
    """Captured output exceeded the configured byte budget."""

    def __init__(self, *, executable: str, limit: int) -> None:
        super().__init__(
            f"output too large (exceeded {limit} bytes)",
            executable=executable,
        )
        self.limit = limit


class ProcessTimeoutError(ExecutionError):
    """The invocation did not finish within the allotted time."""

    def __init__(self, *, executable: str, timeout: float) -> None:
        super().__init__(
            f"timed out after {timeout:g}s",
            executable=executable,
        )
        self.timeout = timeout


class InstallError(GreplyError):
    """Base class for installer failures. These are always raised."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(message)
        self.path = path


class InstallNotFound(InstallError):
    pass


class InstallAlreadyExists(InstallError):
    pass


class InstallPermissionDenied(InstallError):
    def __init__(self, path: Path, guidance: str) -> None:
        super().__init__(path, guidance)
        self.guidance = guidance


class InstallOtherIO(InstallError):
    pass


def _format_failure(reason: str, stdout: str, stderr: str) -> str:
    parts = [f"greply failed: {reason}"]
    if stdout:
        parts.append(f"\nSTDOUT:\n{stdout}")
    if stderr:
        parts.append(f"\nSTDERR:\n{stderr}")
    return "".join(parts)
