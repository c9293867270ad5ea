"""Tests for agents_config module."""

from unittest.mock import patch

import pytest

from loopengine.lib.agents_config import (
    DEFAULT_STAGE_COMMANDS,
    AgentsConfig,
    get_stage_binary,
    get_stage_command,
    load_agents_config,
    validate_stage_binaries,
)


class TestLoadAgentsConfig:
    """Tests for load_agents_config()."""

    def test_returns_defaults_when_no_home(self):
        config = load_agents_config(None)
        assert config.stages == DEFAULT_STAGE_COMMANDS

    def test_returns_defaults_when_file_missing(self, tmp_path):
        config = load_agents_config(tmp_path)
        assert config.stages == DEFAULT_STAGE_COMMANDS

    def test_loads_custom_config(self, tmp_path):
        (tmp_path / "agents.yaml").write_text(
            "stages:\n"
            "  execute: my-agent --workdir {worktree}\n"
        )
        config = load_agents_config(tmp_path)
        assert config.stages["execute"] == "my-agent --workdir {worktree}"
        # Other stages keep their defaults
        assert config.stages["prd_generate"] == DEFAULT_STAGE_COMMANDS["prd_generate"]

    def test_handles_invalid_yaml(self, tmp_path):
        (tmp_path / "agents.yaml").write_text("stages: [unclosed\n")
        config = load_agents_config(tmp_path)
        assert config.stages == DEFAULT_STAGE_COMMANDS

    def test_handles_wrong_shape(self, tmp_path):
        (tmp_path / "agents.yaml").write_text("stages: just-a-string\n")
        config = load_agents_config(tmp_path)
        assert config.stages == DEFAULT_STAGE_COMMANDS

    def test_defaults_not_shared(self):
        config = AgentsConfig()
        config.stages["execute"] = "changed"
        assert DEFAULT_STAGE_COMMANDS["execute"] != "changed"


class TestGetStageCommand:
    """Tests for get_stage_command()."""

    def test_default_execute(self):
        assert get_stage_command(AgentsConfig(), "execute") == [
            "claude", "--print", "--dangerously-skip-permissions",
        ]

    def test_substitution_keeps_paths_with_spaces_whole(self):
        config = AgentsConfig(stages={"execute": "agent --cwd {worktree} --fast"})
        cmd = get_stage_command(config, "execute", {"worktree": "/tmp/my work"})
        assert cmd == ["agent", "--cwd", "/tmp/my work", "--fast"]

    def test_unsubstituted_vars_logged(self, caplog):
        config = AgentsConfig(stages={"execute": "agent {missing}"})
        assert get_stage_command(config, "execute") == ["agent", "{missing}"]
        assert "unsubstituted" in caplog.text

    def test_unknown_stage(self):
        with pytest.raises(ValueError, match="Unknown stage"):
            get_stage_command(AgentsConfig(), "deploy")

    def test_empty_command(self):
        with pytest.raises(ValueError, match="empty"):
            get_stage_command(AgentsConfig(stages={"execute": "   "}), "execute")


class TestBinaries:
    def test_get_stage_binary(self):
        assert get_stage_binary(AgentsConfig(), "prd_generate") == "claude"

    @patch("loopengine.lib.agents_config.shutil.which", return_value="/usr/bin/claude")
    def test_all_present(self, mock_which):
        assert validate_stage_binaries(AgentsConfig(), ["execute", "prd_generate"]).ok

    @patch("loopengine.lib.agents_config.shutil.which", return_value=None)
    def test_missing_binary(self, mock_which):
        result = validate_stage_binaries(AgentsConfig(), ["execute", "prd_generate"])
        assert not result.ok
        assert result.missing_binary == "claude"
        assert set(result.stages_affected) == {"execute", "prd_generate"}
        assert "agents.yaml" in result.error_message

    def test_unknown_stages_skipped(self):
        assert validate_stage_binaries(AgentsConfig(), ["nope"]).ok
