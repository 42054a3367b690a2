from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

import greply.config as greply_config
from greply.installer import Installer, InstallOptions

GREPLY_ENV_KEYS = [
    "GREPLY_CMD",
    "greply_CMD",
    "GREPLY_TIMEOUT",
    "GREPLY_MAX_OUTPUT_BYTES",
    "GREPLY_HELP_MAX_OUTPUT_BYTES",
    "GREPLY_INSTALL_DIR",
    "GREPLY_INSTALL_NAME",
]

ScriptFactory = Callable[[str, str], Path]

requires_posix_shell = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="needs a POSIX shell to run fake executables",
)
requires_bash_grep = pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("grep") is None,
    reason="the bundled greply script needs bash and grep",
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    for key in GREPLY_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GREPLY_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("GREPLY_CONFIG_FILE", str(tmp_path / "missing.toml"))
    greply_config.reset_config()
    try:
        yield
    finally:
        greply_config.reset_config()


@pytest.fixture()
def make_script(tmp_path: Path) -> ScriptFactory:
    """Write an executable /bin/sh script into a scratch bin directory."""

    bin_dir = tmp_path / "fake-bin"
    bin_dir.mkdir()

    def factory(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        path.chmod(0o755)
        return path

    return factory


@pytest.fixture()
def installed_greply(tmp_path: Path) -> Path:
    """The bundled greply script, installed (and made executable) under tmp_path."""

    result = Installer().install(InstallOptions(dest_dir=tmp_path / "bin"))
    return result.path


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
