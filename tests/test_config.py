"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from dump_release.config import Settings, UnparsablePolicy, load_settings
from dump_release.timestamps import DEFAULT_PRIOR_TIMESTAMP


class TestDefaults:
    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "absent.yaml", environ={})
        assert settings.outputs == ["categories", "keywords", "dump"]
        assert settings.title_file == "last_updated"
        assert settings.archive_name == "data.tar.zst"
        assert settings.default_prior_timestamp == DEFAULT_PRIOR_TIMESTAMP
        assert settings.retention.threshold == 2
        assert settings.retention.unparsable == UnparsablePolicy.FAIL
        assert settings.schedule.interval_seconds == 0

    def test_no_path_and_empty_environment(self) -> None:
        settings = load_settings(None, environ={})
        assert settings.repository == ""
        assert settings.token.get_secret_value() == ""


class TestYamlFile:
    def test_values_are_loaded(self, tmp_path: Path) -> None:
        path = tmp_path / "dump-release.yaml"
        path.write_text(
            "repository: myorg/crates-dump\n"
            "producer:\n"
            "  command: [./bin/producer, --quiet]\n"
            "  timeout_seconds: 60\n"
            "retention:\n"
            "  threshold: 3\n"
            "  unparsable: exclude\n"
        )
        settings = load_settings(path, environ={})
        assert settings.repository == "myorg/crates-dump"
        assert settings.producer.command == ["./bin/producer", "--quiet"]
        assert settings.producer.timeout_seconds == 60
        assert settings.retention.threshold == 3
        assert settings.retention.unparsable == UnparsablePolicy.EXCLUDE

    def test_invalid_yaml_raises_value_error(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("retention: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_settings(path, environ={})

    def test_non_mapping_raises_value_error(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})

    def test_invalid_values_raise_value_error(self, tmp_path: Path) -> None:
        path = tmp_path / "bad-values.yaml"
        path.write_text("retention:\n  threshold: 0\n")
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_settings(path, environ={})

    def test_duplicate_outputs_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(outputs=["dump", "dump"])

    def test_empty_producer_command_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "empty-cmd.yaml"
        path.write_text("producer:\n  command: []\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})


class TestEnvironmentOverrides:
    def test_actions_variables_override_file(self, tmp_path: Path) -> None:
        path = tmp_path / "dump-release.yaml"
        path.write_text("repository: from/file\n")
        settings = load_settings(
            path,
            environ={
                "GITHUB_REPOSITORY": "from/env",
                "GITHUB_TOKEN": "ghs_secret",
                "GITHUB_SHA": "0123456789abcdef",
                "GITHUB_RUN_ID": "987654",
                "DUMP_RELEASE_WORKDIR": str(tmp_path),
            },
        )
        assert settings.repository == "from/env"
        assert settings.token.get_secret_value() == "ghs_secret"
        assert settings.revision == "0123456789abcdef"
        assert settings.run_id == "987654"
        assert settings.workdir == tmp_path

    def test_empty_variables_are_ignored(self) -> None:
        settings = load_settings(None, environ={"GITHUB_REPOSITORY": ""})
        assert settings.repository == ""

    def test_token_is_not_exposed(self) -> None:
        settings = load_settings(None, environ={"GITHUB_TOKEN": "ghs_secret"})
        assert "ghs_secret" not in repr(settings)
        assert "ghs_secret" not in settings.model_dump_json()
