from __future__ import annotations

import logging
import math
import os
import shutil
import sys
import tomllib
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from greply.errors import ConfigError

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
BUNDLED_EXECUTABLE = PACKAGE_ROOT / "bin" / "greply.sh"
DEFAULT_COMMAND = "greply"
ENV_FILE_NAME = ".env"
DEFAULT_CONFIG_FILE = Path.home() / ".config" / "greply" / "config.toml"
DEFAULT_INSTALL_DIR = Path.home() / ".local" / "bin"
DEFAULT_INSTALL_NAME = "greply"
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_HELP_MAX_OUTPUT_BYTES = 2 * 1024 * 1024
ENV_FILE_ENV_VAR = "GREPLY_ENV_FILE"
CONFIG_FILE_ENV_VAR = "GREPLY_CONFIG_FILE"

ExecutableSource = Literal["config", "bundled", "path"]

_PATH_TO_ENV_KEY: dict[tuple[str, str], str] = {
    ("runner", "executable"): "GREPLY_CMD",
    ("runner", "timeout"): "GREPLY_TIMEOUT",
    ("runner", "max_output_bytes"): "GREPLY_MAX_OUTPUT_BYTES",
    ("runner", "help_max_output_bytes"): "GREPLY_HELP_MAX_OUTPUT_BYTES",
    ("install", "dest_dir"): "GREPLY_INSTALL_DIR",
    ("install", "file_name"): "GREPLY_INSTALL_NAME",
}
_ENV_KEY_TO_PATH = {env_name: path for path, env_name in _PATH_TO_ENV_KEY.items()}
# Older releases read the lowercase-prefixed variable; the canonical name wins.
_LEGACY_ENV_KEYS = {"greply_CMD": "GREPLY_CMD"}

_SECTION_FIELDS: dict[str, set[str]] = {}
for section, field in _PATH_TO_ENV_KEY:
    _SECTION_FIELDS.setdefault(section, set()).add(field)


@dataclass(frozen=True)
class RunnerConfig:
    executable: str
    executable_source: ExecutableSource
    timeout: float | None
    max_output_bytes: int
    help_max_output_bytes: int


@dataclass(frozen=True)
class InstallConfig:
    dest_dir: Path
    file_name: str


@dataclass(frozen=True)
class GreplyConfig:
    runner: RunnerConfig
    install: InstallConfig


_CONFIG_CACHE: GreplyConfig | None = None


def get_config() -> GreplyConfig:
    """Return a cached configuration using the default sources."""
    global _CONFIG_CACHE
    if _CONFIG_CACHE is None:
        _CONFIG_CACHE = load_config()
    return _CONFIG_CACHE


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = None


def load_config(
    *,
    env_file: Path | str | None = None,
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> GreplyConfig:
    """Load a configuration from `.env`, the personal config file, and environment variables."""
    env_path = _resolve_env_file(env_file)
    config_path = _resolve_config_file(config_file)

    merged: dict[str, Any] = {}
    _deep_merge(merged, _env_mapping_to_nested(_parse_env_file(env_path)))
    _deep_merge(merged, _filter_known_sections(_read_config_file(config_path)))
    runtime_values = environ if environ is not None else os.environ
    _deep_merge(merged, _env_mapping_to_nested(runtime_values))
    config = _build_config(merged)
    logger.debug(
        "Loaded greply configuration",
        extra={
            "env_file": str(env_path),
            "config_file": str(config_path),
            "executable": config.runner.executable,
            "executable_source": config.runner.executable_source,
        },
    )
    return config


def resolve_default_executable(configured: str | None = None) -> tuple[str, ExecutableSource]:
    """Pick the executable: explicit setting, then the bundled script, then `greply` on PATH."""
    if configured and configured.strip():
        return configured, "config"
    if BUNDLED_EXECUTABLE.exists():
        return str(BUNDLED_EXECUTABLE), "bundled"
    return DEFAULT_COMMAND, "path"


def doctor(*, env_file: Path | str | None = None, config_file: Path | str | None = None) -> bool:
    """Validate configuration sources and print a diagnostic summary."""
    try:
        config = load_config(env_file=env_file, config_file=config_file)
    except ConfigError as exc:
        print("Configuration invalid:", file=sys.stderr)
        print(f"  {exc}", file=sys.stderr)
        return False

    runner = config.runner
    runnable = _is_runnable(runner.executable)
    timeout = f"{runner.timeout:g}s" if runner.timeout is not None else "none"
    print("Configuration looks good.", file=sys.stdout)
    print(f"  Executable: {runner.executable} ({runner.executable_source})", file=sys.stdout)
    print(f"  Executable runnable: {'yes' if runnable else 'no'}", file=sys.stdout)
    print(f"  Search output budget: {runner.max_output_bytes} bytes", file=sys.stdout)
    print(f"  Help output budget: {runner.help_max_output_bytes} bytes", file=sys.stdout)
    print(f"  Timeout: {timeout}", file=sys.stdout)
    print(
        f"  Install destination: {config.install.dest_dir / config.install.file_name}",
        file=sys.stdout,
    )
    return True


def _build_config(data: Mapping[str, Any]) -> GreplyConfig:
    runner = _section(data, "runner")
    install = _section(data, "install")
    problems: list[str] = []

    executable, source = resolve_default_executable(_text(runner.get("executable")))
    timeout = _positive_number(runner.get("timeout"), "GREPLY_TIMEOUT", problems)
    max_output = _positive_int(
        runner.get("max_output_bytes"),
        "GREPLY_MAX_OUTPUT_BYTES",
        DEFAULT_MAX_OUTPUT_BYTES,
        problems,
    )
    help_max_output = _positive_int(
        runner.get("help_max_output_bytes"),
        "GREPLY_HELP_MAX_OUTPUT_BYTES",
        DEFAULT_HELP_MAX_OUTPUT_BYTES,
        problems,
    )
    file_name = _text(install.get("file_name")) or DEFAULT_INSTALL_NAME
    if "/" in file_name or file_name in {".", ".."}:
        problems.append(f"GREPLY_INSTALL_NAME must be a plain file name, got {file_name!r}")
    dest_dir_raw = _text(install.get("dest_dir"))
    dest_dir = Path(dest_dir_raw).expanduser() if dest_dir_raw else DEFAULT_INSTALL_DIR

    if problems:
        raise ConfigError("Invalid values: " + "; ".join(sorted(problems)))

    return GreplyConfig(
        runner=RunnerConfig(
            executable=executable,
            executable_source=source,
            timeout=timeout,
            max_output_bytes=max_output,
            help_max_output_bytes=help_max_output,
        ),
        install=InstallConfig(dest_dir=dest_dir, file_name=file_name),
    )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name)
    return section if isinstance(section, Mapping) else {}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_int(value: Any, env_name: str, default: int, problems: list[str]) -> int:
    text = _text(value)
    if text is None:
        return default
    try:
        parsed = int(text)
    except ValueError:
        problems.append(f"{env_name} must be an integer, got {text!r}")
        return default
    if parsed <= 0:
        problems.append(f"{env_name} must be positive, got {parsed}")
        return default
    return parsed


def _positive_number(value: Any, env_name: str, problems: list[str]) -> float | None:
    text = _text(value)
    if text is None:
        return None
    try:
        parsed = float(text)
    except ValueError:
        problems.append(f"{env_name} must be a number of seconds, got {text!r}")
        return None
    if not math.isfinite(parsed):
        problems.append(f"{env_name} must be a finite number of seconds, got {text}")
        return None
    if parsed <= 0:
        problems.append(f"{env_name} must be positive, got {text}")
        return None
    return parsed


def _is_runnable(executable: str) -> bool:
    candidate = Path(executable)
    if candidate.is_absolute() or os.sep in executable:
        return candidate.is_file() and os.access(candidate, os.X_OK)
    return shutil.which(executable) is not None


def _resolve_env_file(explicit: Path | str | None) -> Path:
    if explicit is not None:
        return Path(explicit)
    override = os.environ.get(ENV_FILE_ENV_VAR)
    if override:
        return Path(override)
    return Path.cwd() / ENV_FILE_NAME


def _resolve_config_file(explicit: Path | str | None) -> Path:
    if explicit is not None:
        return Path(explicit)
    override = os.environ.get(CONFIG_FILE_ENV_VAR)
    if override:
        return Path(override)
    return DEFAULT_CONFIG_FILE


def _parse_env_file(path: Path) -> dict[str, str]:
    try:
        contents = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigError(f"Failed to read env file {path}: {exc}") from exc

    values: dict[str, str] = {}
    for raw_line in contents.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key = key.strip()
        value = _strip_quotes(raw_value.strip())
        values[key] = value
    return values


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
        return value[1:-1]
    return value


def _read_config_file(path: Path) -> Mapping[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc


def _filter_known_sections(raw: Mapping[str, Any]) -> dict[str, Any]:
    filtered: dict[str, Any] = {}
    for section, allowed_fields in _SECTION_FIELDS.items():
        raw_section = raw.get(section)
        if isinstance(raw_section, Mapping):
            filtered_section: dict[str, Any] = {}
            for field in allowed_fields:
                if field in raw_section:
                    filtered_section[field] = str(raw_section[field])
            if filtered_section:
                filtered[section] = filtered_section
    return filtered


def _env_mapping_to_nested(mapping: Mapping[str, Any]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for legacy_key, env_name in _LEGACY_ENV_KEYS.items():
        if _text(mapping.get(legacy_key)) and not _text(mapping.get(env_name)):
            _assign_path(nested, _ENV_KEY_TO_PATH[env_name], mapping[legacy_key])
    for key, value in mapping.items():
        path = _ENV_KEY_TO_PATH.get(key)
        if not path or _text(value) is None:
            continue
        _assign_path(nested, path, value)
    return nested


def _assign_path(target: MutableMapping[str, Any], path: tuple[str, ...], value: Any) -> None:
    current: MutableMapping[str, Any] = target
    for component in path[:-1]:
        next_value = current.get(component)
        if not isinstance(next_value, MutableMapping):
            next_value = {}
            current[component] = next_value
        current = next_value
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, Any], data: Mapping[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, Mapping):
            child = target.get(key)
            if not isinstance(child, MutableMapping):
                child = {}
                target[key] = child
            _deep_merge(child, value)
        elif value is not None:
            target[key] = value


__all__ = [
    "BUNDLED_EXECUTABLE",
    "ConfigError",
    "GreplyConfig",
    "InstallConfig",
    "RunnerConfig",
    "doctor",
    "get_config",
    "load_config",
    "reset_config",
    "resolve_default_executable",
]
