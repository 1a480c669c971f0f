"""Unit tests for config.py - YAML/env loading and value parsing."""

import pytest

from discoclaude.config import (
    _deep_merge,
    expand_env_vars,
    load_config,
    parse_bool,
    parse_resolution_strategy,
    parse_skip_types,
)
from discoclaude.git.repo_helpers import ResolutionStrategy


class TestParseHelpers:
    """Tests for scalar parsing helpers."""

    def test_parse_skip_types_from_comma_string(self):
        result = parse_skip_types(" Thinking , system:INFO,, ")

        assert result == frozenset({"thinking", "system:info"})

    def test_parse_skip_types_from_list(self):
        assert parse_skip_types(["Tool_Result"]) == frozenset({"tool_result"})
        assert parse_skip_types(None) == frozenset()

    def test_parse_bool(self):
        assert parse_bool("true")
        assert parse_bool("1")
        assert parse_bool(True)
        assert not parse_bool("false")
        assert not parse_bool(None)

    def test_deep_merge_keeps_unrelated_defaults(self):
        base = {"discord": {"token": "", "guild_id": None}, "work_dir": ""}

        merged = _deep_merge(base, {"discord": {"token": "abc"}})

        assert merged == {"discord": {"token": "abc", "guild_id": None}, "work_dir": ""}
        assert base["discord"] == {"token": "", "guild_id": None}

    def test_expand_env_vars(self, monkeypatch):
        monkeypatch.setenv("DISCO_TEST_VALUE", "expanded")

        result = expand_env_vars({"a": ["${DISCO_TEST_VALUE}", "${DISCO_TEST_MISSING}"]})

        assert result == {"a": ["expanded", "${DISCO_TEST_MISSING}"]}


class TestLoadConfig:
    """Tests for load_config with explicit paths and environments."""

    def test_missing_file_yields_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yml", env={})

        assert cfg.discord.token == ""
        assert cfg.discord.guild_id is None
        assert cfg.claude.command == "claude"
        assert cfg.claude.skip_types == frozenset()
        assert cfg.git.force_bare is False
        assert cfg.git.resolution_strategy is ResolutionStrategy.LEGACY
        assert cfg.discord.application_id is None
        assert cfg.worktree_bot is False

    def test_yaml_values_are_merged(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text(
            "discord:\n  guild_id: 123\n  category_name: bots\nclaude:\n  skip_types: [thinking]\n",
            encoding="utf-8",
        )

        cfg = load_config(config_file, env={})

        assert cfg.discord.guild_id == 123
        assert cfg.discord.category_name == "bots"
        assert cfg.claude.skip_types == frozenset({"thinking"})

    def test_environment_overrides_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("discord:\n  token: from-yaml\n", encoding="utf-8")
        env = {
            "DISCORD_BOT_TOKEN": "from-env",
            "DISCORD_CHANNEL_ID": "456",
            "CLAUDE_SKIP_MESSAGE_TYPES": "Other,system:info",
            "GIT_BARE_REPO": "true",
            "GIT_RESOLUTION_STRATEGY": "Fixed",
            "DISCORD_APPLICATION_ID": "987654321",
            "WORK_DIR": str(tmp_path),
            "WORKTREE_BOT": "true",
        }

        cfg = load_config(config_file, env=env)

        assert cfg.discord.token == "from-env"
        assert cfg.discord.channel_id == 456
        assert cfg.claude.skip_types == frozenset({"other", "system:info"})
        assert cfg.git.force_bare is True
        assert cfg.git.resolution_strategy is ResolutionStrategy.FIXED
        assert cfg.discord.application_id == 987654321
        assert cfg.work_dir == str(tmp_path)
        assert cfg.worktree_bot is True

    def test_non_mapping_yaml_is_rejected(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config(config_file, env={})

    def test_non_mapping_section_is_rejected(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("discord: just-a-token\n", encoding="utf-8")

        with pytest.raises(ValueError, match="section 'discord' must be a mapping"):
            load_config(config_file, env={})

    def test_unknown_resolution_strategy_is_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="expected one of: legacy, fixed"):
            load_config(tmp_path / "absent.yml", env={"GIT_RESOLUTION_STRATEGY": "newest"})


def test_parse_resolution_strategy_defaults_to_legacy():
    assert parse_resolution_strategy(None) is ResolutionStrategy.LEGACY
    assert parse_resolution_strategy(" FIXED ") is ResolutionStrategy.FIXED
