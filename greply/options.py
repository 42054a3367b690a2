"""Search options and the argument-vector builder for the greply executable."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from greply.errors import ValidationError

__all__ = [
    "SearchOptions",
    "build_args",
    "resolve_target",
]

_BOOLEAN_FLAGS: tuple[tuple[str, str], ...] = (
    ("recursive", "-R"),
    ("whole_word", "-w"),
    ("match_case", "-c"),
    ("fixed_strings", "-F"),
    ("no_color", "--no-color"),
)

# Keys accepted by from_mapping() besides the field names themselves.
_MAPPING_ALIASES = {
    "wholeWord": "whole_word",
    "matchCase": "match_case",
    "fixedStrings": "fixed_strings",
    "noColor": "no_color",
    "suppressErrors": "suppress_errors",
    "greplyCmd": "executable",
    "executableOverride": "executable",
}


@dataclass(frozen=True, slots=True)
class SearchOptions:
    """A fully validated greply search request.

    ``before``/``after`` map to ``-B``/``-A`` context lines and are omitted
    when ``None``. ``executable`` overrides the runner's default for this
    call only. ``suppress_errors`` turns a failed invocation into a returned
    outcome instead of a raised :class:`~greply.errors.ExecutionError`.
    """

    query: str
    target: str | os.PathLike[str] = "."
    before: int | None = None
    after: int | None = None
    recursive: bool = False
    whole_word: bool = False
    match_case: bool = False
    fixed_strings: bool = False
    no_color: bool = False
    executable: str | None = None
    suppress_errors: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.query, str) or not self.query.strip():
            raise ValidationError("query is required and must be a non-empty string")
        if not isinstance(self.target, (str, os.PathLike)):
            raise ValidationError(f"target must be a path, got {type(self.target).__name__}")
        if isinstance(self.target, str) and not self.target.strip():
            raise ValidationError("target must not be empty")
        for name in ("before", "after"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
        for name, _flag in _BOOLEAN_FLAGS:
            _require_bool(name, getattr(self, name))
        _require_bool("suppress_errors", self.suppress_errors)
        if self.executable is not None and (
            not isinstance(self.executable, str) or not self.executable.strip()
        ):
            raise ValidationError("executable must be a non-empty string when given")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> SearchOptions:
        """Build options from a loose mapping (snake_case or camelCase keys)."""
        known = {item.name for item in fields(cls)}
        kwargs: dict[str, Any] = {}
        unknown: list[str] = []
        for key, value in values.items():
            name = _MAPPING_ALIASES.get(key, key)
            if name not in known:
                unknown.append(key)
                continue
            if value is None and name not in ("before", "after", "executable"):
                continue
            kwargs[name] = value
        if unknown:
            raise ValidationError("Unknown search options: " + ", ".join(sorted(unknown)))
        if "query" not in kwargs:
            raise ValidationError("query is required and must be a non-empty string")
        return cls(**kwargs)


def resolve_target(target: str | os.PathLike[str], cwd: str | os.PathLike[str] | None = None) -> str:
    """Return ``target`` as an absolute, normalized path relative to ``cwd``."""
    base = Path(cwd) if cwd is not None else Path.cwd()
    return os.path.normpath(os.path.join(os.path.abspath(base), os.fspath(target)))


def build_args(
    options: SearchOptions | Mapping[str, Any],
    *,
    cwd: str | os.PathLike[str] | None = None,
) -> list[str]:
    """Translate ``options`` into greply's argument vector.

    Order is fixed: ``-B``, ``-A``, ``-R``, ``-w``, ``-c``, ``-F``,
    ``--no-color``, the query, then the absolute target path. Disabled
    options are left out entirely.
    """
    if not isinstance(options, SearchOptions):
        options = SearchOptions.from_mapping(options)

    args: list[str] = []
    if options.before is not None:
        args.extend(("-B", str(options.before)))
    if options.after is not None:
        args.extend(("-A", str(options.after)))
    for name, flag in _BOOLEAN_FLAGS:
        if getattr(options, name):
            args.append(flag)
    args.append(options.query)
    args.append(resolve_target(options.target, cwd))
    return args


def _require_bool(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a boolean, got {value!r}")
