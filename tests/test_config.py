from __future__ import annotations

from pathlib import Path

import pytest

import greply.config as greply_config


def sample_values() -> dict[str, str]:
    return {
        "GREPLY_CMD": "/opt/greply/bin/greply",
        "GREPLY_TIMEOUT": "12.5",
        "GREPLY_MAX_OUTPUT_BYTES": "4096",
        "GREPLY_HELP_MAX_OUTPUT_BYTES": "1024",
        "GREPLY_INSTALL_DIR": "/srv/tools/bin",
        "GREPLY_INSTALL_NAME": "greply-env",
    }


def write_env_file(path: Path, values: dict[str, str]) -> Path:
    env_file = path / ".env"
    lines = (f"{key}={value}" for key, value in values.items())
    env_file.write_text("\n".join(lines), encoding="utf-8")
    return env_file


def write_config_file(path: Path, *, runner: dict[str, object], install: dict[str, str]) -> Path:
    def render(value: object) -> str:
        return f'"{value}"' if isinstance(value, str) else str(value)

    lines = ["[runner]"]
    lines.extend(f"{key} = {render(value)}" for key, value in runner.items())
    lines.append("[install]")
    lines.extend(f"{key} = {render(value)}" for key, value in install.items())
    config_path = path / "config.toml"
    config_path.write_text("\n".join(lines), encoding="utf-8")
    return config_path


def test_defaults_without_any_source(tmp_path: Path) -> None:
    config = greply_config.load_config(environ={})

    assert config.runner.executable == str(greply_config.BUNDLED_EXECUTABLE)
    assert config.runner.executable_source == "bundled"
    assert config.runner.timeout is None
    assert config.runner.max_output_bytes == 10 * 1024 * 1024
    assert config.runner.help_max_output_bytes == 2 * 1024 * 1024
    assert config.install.dest_dir == Path.home() / ".local" / "bin"
    assert config.install.file_name == "greply"


def test_falls_back_to_command_on_path(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(greply_config, "BUNDLED_EXECUTABLE", tmp_path / "missing.sh")

    config = greply_config.load_config(environ={})

    assert config.runner.executable == "greply"
    assert config.runner.executable_source == "path"


def test_loads_values_from_env_file(tmp_path: Path) -> None:
    env_file = write_env_file(tmp_path, sample_values())

    config = greply_config.load_config(env_file=env_file, environ={})

    assert config.runner.executable == "/opt/greply/bin/greply"
    assert config.runner.executable_source == "config"
    assert config.runner.timeout == 12.5
    assert config.runner.max_output_bytes == 4096
    assert config.runner.help_max_output_bytes == 1024
    assert config.install.dest_dir == Path("/srv/tools/bin")
    assert config.install.file_name == "greply-env"


def test_config_file_overrides_env_file(tmp_path: Path) -> None:
    env_file = write_env_file(tmp_path, sample_values())
    config_file = write_config_file(
        tmp_path,
        runner={"executable": "/usr/local/bin/greply", "timeout": 3, "max_output_bytes": 2048},
        install={"dest_dir": "~/bin"},
    )

    config = greply_config.load_config(env_file=env_file, config_file=config_file, environ={})

    assert config.runner.executable == "/usr/local/bin/greply"
    assert config.runner.timeout == 3.0
    assert config.runner.max_output_bytes == 2048
    assert config.runner.help_max_output_bytes == 1024
    assert config.install.dest_dir == Path.home() / "bin"
    assert config.install.file_name == "greply-env"


def test_environment_variables_have_highest_priority(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    env_file = write_env_file(tmp_path, sample_values())
    config_file = write_config_file(
        tmp_path, runner={"executable": "/from/config"}, install={}
    )
    monkeypatch.setenv("GREPLY_CMD", "/from/environment")

    config = greply_config.load_config(env_file=env_file, config_file=config_file)

    assert config.runner.executable == "/from/environment"


def test_blank_environment_value_does_not_override(tmp_path: Path) -> None:
    config_file = write_config_file(tmp_path, runner={"executable": "/from/config"}, install={})

    config = greply_config.load_config(config_file=config_file, environ={"GREPLY_CMD": "   "})

    assert config.runner.executable == "/from/config"


def test_legacy_variable_name_is_honoured() -> None:
    config = greply_config.load_config(environ={"greply_CMD": "/legacy/greply"})

    assert config.runner.executable == "/legacy/greply"
    assert config.runner.executable_source == "config"


def test_canonical_variable_wins_over_legacy_name() -> None:
    config = greply_config.load_config(
        environ={"greply_CMD": "/legacy/greply", "GREPLY_CMD": "/canonical/greply"}
    )

    assert config.runner.executable == "/canonical/greply"


def test_invalid_values_raise_error_naming_every_key() -> None:
    with pytest.raises(greply_config.ConfigError) as excinfo:
        greply_config.load_config(
            environ={
                "GREPLY_TIMEOUT": "soon",
                "GREPLY_MAX_OUTPUT_BYTES": "-5",
                "GREPLY_HELP_MAX_OUTPUT_BYTES": "1.5",
            }
        )

    message = str(excinfo.value)
    assert "GREPLY_TIMEOUT" in message
    assert "GREPLY_MAX_OUTPUT_BYTES" in message
    assert "GREPLY_HELP_MAX_OUTPUT_BYTES" in message


@pytest.mark.parametrize("value", ["nan", "inf", "-inf", "Infinity"])
def test_timeout_must_be_finite(value: str) -> None:
    with pytest.raises(greply_config.ConfigError, match="GREPLY_TIMEOUT"):
        greply_config.load_config(environ={"GREPLY_TIMEOUT": value})


def test_env_file_defaults_to_working_directory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_env_file(tmp_path, {"GREPLY_INSTALL_NAME": "from-cwd"})
    monkeypatch.delenv("GREPLY_ENV_FILE")
    monkeypatch.chdir(tmp_path)

    config = greply_config.load_config(environ={})

    assert config.install.file_name == "from-cwd"


def test_install_name_must_be_a_file_name() -> None:
    with pytest.raises(greply_config.ConfigError, match="GREPLY_INSTALL_NAME"):
        greply_config.load_config(environ={"GREPLY_INSTALL_NAME": "bin/greply"})


def test_malformed_config_file_is_reported(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[runner\nexecutable = ", encoding="utf-8")

    with pytest.raises(greply_config.ConfigError, match="Malformed"):
        greply_config.load_config(config_file=config_file, environ={})


def test_env_file_location_can_come_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = write_env_file(tmp_path, {"GREPLY_INSTALL_NAME": "from-env-file"})
    monkeypatch.setenv("GREPLY_ENV_FILE", str(env_file))

    config = greply_config.load_config()

    assert config.install.file_name == "from-env-file"


def test_get_config_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREPLY_CMD", "/first")
    first = greply_config.get_config()
    monkeypatch.setenv("GREPLY_CMD", "/second")

    assert greply_config.get_config() is first

    greply_config.reset_config()
    assert greply_config.get_config().runner.executable == "/second"


def test_doctor_returns_false_when_invalid(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    env_file = write_env_file(tmp_path, {"GREPLY_TIMEOUT": "never"})

    status = greply_config.doctor(env_file=env_file)
    captured = capsys.readouterr()

    assert status is False
    assert "GREPLY_TIMEOUT" in captured.err


def test_doctor_reports_success(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    env_file = write_env_file(tmp_path, {"GREPLY_CMD": str(tmp_path / "absent-greply")})

    status = greply_config.doctor(env_file=env_file)
    captured = capsys.readouterr()

    assert status is True
    output = captured.out.lower()
    assert "configuration looks good" in output
    assert "executable runnable: no" in output
    assert "timeout: none" in output
    assert "install destination" in output


def test_doctor_command_line(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    from greply.config.__main__ import main

    env_file = write_env_file(tmp_path, {"GREPLY_MAX_OUTPUT_BYTES": "0"})

    assert main(["doctor", "--env-file", str(env_file)]) == 1
    assert "GREPLY_MAX_OUTPUT_BYTES" in capsys.readouterr().err
    assert main([]) == 1


def test_doctor_command_line_writes_json_logs(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    import json

    from greply.config.__main__ import main

    env_file = write_env_file(tmp_path, {"GREPLY_CMD": "/opt/greply"})

    status = main(
        ["doctor", "--env-file", str(env_file), "--log-level", "debug", "--log-format", "json"]
    )

    captured = capsys.readouterr()
    assert status == 0
    record = json.loads(captured.err.strip().splitlines()[-1])
    assert record["message"] == "Loaded greply configuration"
    assert record["logger"] == "greply.config"
    assert record["executable"] == "/opt/greply"
    assert record["executable_source"] == "config"
    assert record["env_file"] == str(env_file)
    assert "Configuration looks good." in captured.out
