"""Tests for taskpilot config models and parser."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
import yaml
from pydantic import ValidationError

from taskpilot.config.models import DEFAULT_CLI_COMMAND, CliConfig, PilotConfig
from taskpilot.config.parser import DEFAULT_CONFIG_NAME, ConfigError, load_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: Any) -> Path:
    """Write *data* as YAML and return the file path."""
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ===================================================================
# Model validation tests
# ===================================================================


class TestDefaults:
    def test_defaults_applied(self) -> None:
        cfg = PilotConfig()
        assert cfg.max_concurrent_tasks == 10
        assert cfg.max_queue_length == 10
        assert cfg.working_directory is None
        assert cfg.cli.command == DEFAULT_CLI_COMMAND
        assert cfg.cancel_grace_seconds == 3.0
        assert cfg.batch_delay_ms == 50
        assert cfg.max_continuation_attempts == 10

    def test_queue_length_follows_concurrency(self) -> None:
        assert PilotConfig(max_concurrent_tasks=3).max_queue_length == 3

    def test_explicit_queue_length_kept(self) -> None:
        cfg = PilotConfig(max_concurrent_tasks=3, max_queue_length=0)
        assert cfg.max_queue_length == 0


class TestFullConfig:
    def test_all_fields(self) -> None:
        cfg = PilotConfig.model_validate(
            {
                "max_concurrent_tasks": 2,
                "max_queue_length": 5,
                "working_directory": "/srv/work",
                "cancel_grace_seconds": 1.5,
                "batch_delay_ms": 0,
                "max_continuation_attempts": 3,
                "max_line_bytes": 4096,
                "cli": {
                    "command": "/opt/bin/agent",
                    "extra_args": ["--print-logs"],
                    "system_prompt_flag": "--append-system-prompt",
                    "env": {"AGENT_MODE": "ci"},
                    "strip_env": ["AWS_SECRET_ACCESS_KEY"],
                },
            }
        )
        assert cfg.max_queue_length == 5
        assert cfg.cli.command == "/opt/bin/agent"
        assert cfg.cli.extra_args == ["--print-logs"]
        assert cfg.cli.env == {"AGENT_MODE": "ci"}


class TestValidationErrors:
    @pytest.mark.parametrize(
        "raw",
        [
            {"max_concurrent_tasks": 0},
            {"max_queue_length": -1},
            {"cancel_grace_seconds": 0},
            {"batch_delay_ms": -5},
            {"max_continuation_attempts": -1},
            {"max_line_bytes": 10},
        ],
    )
    def test_out_of_range(self, raw: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            PilotConfig.model_validate(raw)

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError, match="extra"):
            PilotConfig.model_validate({"max_tasks": 3})

    def test_blank_command_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not be empty"):
            CliConfig(command="   ")

    def test_command_stripped(self) -> None:
        assert CliConfig(command="  opencode ").command == "opencode"


# ===================================================================
# Parser tests
# ===================================================================


class TestLoadConfig:
    def test_explicit_path(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "custom.yaml", {"max_concurrent_tasks": 4})
        assert load_config(path).max_concurrent_tasks == 4

    def test_missing_explicit_path(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(tmp_path / "nope.yaml")

    def test_default_file_in_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_yaml(tmp_path / DEFAULT_CONFIG_NAME, {"batch_delay_ms": 5})
        monkeypatch.chdir(tmp_path)
        assert load_config().batch_delay_ms == 5

    def test_no_default_file_gives_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_config() == PilotConfig()

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / DEFAULT_CONFIG_NAME
        path.write_text("", encoding="utf-8")
        assert load_config(path) == PilotConfig()

    def test_invalid_yaml_reports_location(self, tmp_path: Path) -> None:
        path = tmp_path / DEFAULT_CONFIG_NAME
        path.write_text("cli:\n  command: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match=r"Invalid YAML in taskpilot\.yaml \(line"):
            load_config(path)

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / DEFAULT_CONFIG_NAME, ["a", "b"])
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_config(path)

    def test_validation_errors_are_readable(self, tmp_path: Path) -> None:
        path = _write_yaml(
            tmp_path / DEFAULT_CONFIG_NAME,
            {"max_concurrent_tasks": 0, "cli": {"commnd": "x"}},
        )
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        message = str(exc_info.value)
        assert message.startswith("Config validation failed:")
        assert "max_concurrent_tasks:" in message
        assert "cli → commnd: Unknown setting (did you mean 'command'?)" in message

    def test_unknown_setting_without_close_match(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / DEFAULT_CONFIG_NAME, {"colour": "blue"})
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        message = str(exc_info.value)
        assert "colour: Unknown setting" in message
        assert "did you mean" not in message

    def test_wrong_type_keeps_validator_message(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / DEFAULT_CONFIG_NAME, {"cli": {"extra_args": "--x"}})
        with pytest.raises(ConfigError, match=r"cli → extra_args: Input should be a valid list"):
            load_config(path)

    def test_dotenv_loaded_next_to_config(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TASKPILOT_TEST_TOKEN", raising=False)
        (tmp_path / ".env").write_text("TASKPILOT_TEST_TOKEN=abc123\n", encoding="utf-8")
        path = _write_yaml(tmp_path / DEFAULT_CONFIG_NAME, {})
        load_config(path)
        assert os.environ["TASKPILOT_TEST_TOKEN"] == "abc123"
        monkeypatch.delenv("TASKPILOT_TEST_TOKEN")
