"""Copy the bundled greply script into a user bin directory.

The installer never overwrites an existing file and never talks to the
terminal itself; callers that want a yes/no prompt pass a ``confirm``
callback (see :func:`greply.prompt.prompt_yes_no`).

Install once per destination: two concurrent installs to the same path are
only protected by the exclusive create of the destination file.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from greply.config import (
    BUNDLED_EXECUTABLE,
    DEFAULT_INSTALL_DIR,
    DEFAULT_INSTALL_NAME,
    InstallConfig,
    get_config,
)
from greply.errors import (
    InstallAlreadyExists,
    InstallError,
    InstallNotFound,
    InstallOtherIO,
    InstallPermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ConfirmCallback",
    "InstallOptions",
    "InstallResult",
    "InstallState",
    "Installer",
    "install",
]

EXECUTABLE_MODE = 0o755
SYSTEM_BIN_EXAMPLE = "/usr/local/bin"
_PERMISSION_ERRNOS = frozenset({errno.EACCES, errno.EPERM})

ConfirmCallback = Callable[[Path], bool]


class InstallState(str, Enum):
    IDLE = "idle"
    LOCATING = "locating"
    VALIDATING = "validating"
    COPYING = "copying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InstallOptions:
    dest_dir: Path | str | None = None
    file_name: str | None = None

    def __post_init__(self) -> None:
        if self.file_name is None:
            return
        name = self.file_name
        if not name or name in {".", ".."} or "/" in name or os.sep in name:
            raise ValidationError(f"file_name must be a plain file name, got {name!r}")


@dataclass(frozen=True, slots=True)
class InstallResult:
    installed: bool
    path: Path
    skipped: bool = False
    reason: str | None = None


class Installer:
    def __init__(
        self,
        bundled_path: Path | str | None = None,
        *,
        default_dest_dir: Path | str | None = None,
        default_file_name: str = DEFAULT_INSTALL_NAME,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        self.bundled_path = Path(bundled_path) if bundled_path is not None else BUNDLED_EXECUTABLE
        self.default_dest_dir = (
            Path(default_dest_dir) if default_dest_dir is not None else DEFAULT_INSTALL_DIR
        )
        self.default_file_name = default_file_name
        self.confirm = confirm
        self.state = InstallState.IDLE

    @classmethod
    def from_config(
        cls,
        config: InstallConfig | None = None,
        *,
        confirm: ConfirmCallback | None = None,
    ) -> Installer:
        install_config = config if config is not None else get_config().install
        return cls(
            default_dest_dir=install_config.dest_dir,
            default_file_name=install_config.file_name,
            confirm=confirm,
        )

    def install(self, options: InstallOptions | None = None) -> InstallResult:
        """Install the bundled script and return where it landed.

        Raises one of the :class:`~greply.errors.InstallError` subclasses on
        any failure; nothing is suppressed.
        """
        options = options or InstallOptions()
        dest_dir = Path(options.dest_dir or self.default_dest_dir).expanduser()
        destination = Path(os.path.abspath(dest_dir / (options.file_name or self.default_file_name)))

        try:
            source = self._locate()
            self._validate(dest_dir, destination)
            if self.confirm is not None and not self.confirm(destination):
                logger.info("Install declined", extra={"destination": str(destination)})
                self.state = InstallState.DONE
                return InstallResult(
                    installed=False, path=destination, skipped=True, reason="declined"
                )
            self._copy(source, dest_dir, destination)
        except InstallError:
            self.state = InstallState.FAILED
            raise

        self.state = InstallState.DONE
        logger.debug("Installed greply", extra={"destination": str(destination)})
        return InstallResult(installed=True, path=destination)

    def _locate(self) -> Path:
        self.state = InstallState.LOCATING
        if not self.bundled_path.is_file():
            raise InstallNotFound(
                self.bundled_path,
                f"Bundled greply.sh not found at {self.bundled_path}. Cannot install.",
            )
        return self.bundled_path

    def _validate(self, dest_dir: Path, destination: Path) -> None:
        self.state = InstallState.VALIDATING
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except FileExistsError:
            pass
        except OSError as exc:
            raise _io_error(exc, dest_dir, destination) from exc
        if destination.exists() or destination.is_symlink():
            raise InstallAlreadyExists(destination, f"Destination exists: {destination}.")

    def _copy(self, source: Path, dest_dir: Path, destination: Path) -> None:
        self.state = InstallState.COPYING
        created = False
        try:
            with source.open("rb") as src, destination.open("xb") as dst:
                created = True
                shutil.copyfileobj(src, dst)
            os.chmod(destination, EXECUTABLE_MODE)
        except FileExistsError as exc:
            raise InstallAlreadyExists(destination, f"Destination exists: {destination}.") from exc
        except OSError as exc:
            if created:
                _discard(destination)
            raise _io_error(exc, dest_dir, destination) from exc


def install(
    dest_dir: Path | str | None = None,
    file_name: str | None = None,
    *,
    confirm: ConfirmCallback | None = None,
) -> InstallResult:
    """Install with the configured defaults (``~/.local/bin/greply`` unless overridden)."""
    installer = Installer.from_config(confirm=confirm)
    return installer.install(InstallOptions(dest_dir=dest_dir, file_name=file_name))


def _permission_guidance(dest_dir: Path) -> str:
    return "\n".join(
        [
            f"Permission denied writing to {dest_dir}.",
            "Try one of the following:",
            f"- Use a user-writable directory (default): {DEFAULT_INSTALL_DIR} and ensure it's on PATH",
            f"- Or re-run with elevated permissions for system dirs (e.g. {SYSTEM_BIN_EXAMPLE})",
        ]
    )


def _io_error(exc: OSError, dest_dir: Path, destination: Path) -> InstallError:
    if exc.errno in _PERMISSION_ERRNOS:
        logger.warning(
            "Permission denied installing greply",
            extra={"destination": str(destination), "errno": exc.errno},
        )
        return InstallPermissionDenied(destination, _permission_guidance(dest_dir))
    return InstallOtherIO(destination, f"Failed to install greply to {destination}: {exc}")


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to remove partial install", extra={"destination": str(path)})
