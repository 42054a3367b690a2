"""Run the bundled greply search script from Python and install it locally."""

from __future__ import annotations

from greply import logging as _logging  # noqa: F401  (registers the library NullHandler)
from greply.errors import (
    ConfigError,
    ExecutionError,
    GreplyError,
    InstallAlreadyExists,
    InstallError,
    InstallNotFound,
    InstallOtherIO,
    InstallPermissionDenied,
    OutputTooLargeError,
    ProcessTimeoutError,
    SpawnError,
    SuppressedExecutionError,
    ValidationError,
)
from greply.installer import InstallOptions, InstallResult, InstallState, Installer, install
from greply.options import SearchOptions, build_args, resolve_target
from greply.prompt import prompt_yes_no
from greply.runner import (
    GreplyRunner,
    OutcomeKind,
    ProcessRunner,
    SearchOutcome,
    SearchResult,
    get_help,
    normalize_outcome,
    run_search,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "ExecutionError",
    "GreplyError",
    "GreplyRunner",
    "InstallAlreadyExists",
    "InstallError",
    "InstallNotFound",
    "InstallOptions",
    "InstallOtherIO",
    "InstallPermissionDenied",
    "InstallResult",
    "InstallState",
    "Installer",
    "OutcomeKind",
    "OutputTooLargeError",
    "ProcessRunner",
    "ProcessTimeoutError",
    "SearchOptions",
    "SearchOutcome",
    "SearchResult",
    "SpawnError",
    "SuppressedExecutionError",
    "ValidationError",
    "build_args",
    "get_help",
    "install",
    "normalize_outcome",
    "prompt_yes_no",
    "resolve_target",
    "run_search",
]
