"""Unit tests for coordmesh.config - Settings and the CoordinationConfig builder."""

import pytest

from coordmesh.config import Settings
from coordmesh.engine.types import CoordinationConfig


class TestSettings:
    """Test Settings defaults using _env_file=None to isolate from local .env."""

    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.host == "0.0.0.0"
        assert s.port == 8080
        assert s.debug is False
        assert s.remote_agents == ""
        assert s.scoring_strategy == "confidence"

    def test_pipeline_defaults(self):
        s = Settings(_env_file=None)
        assert s.max_concurrent_goals == 4
        assert s.round_timeout_s == 10.0
        assert s.max_blocked_retries == 3
        assert s.max_replans == 2
        assert s.success_window == 50

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MAX_BLOCKED_RETRIES", "5")
        monkeypatch.setenv("QUORUM_FRACTION", "0.75")
        s = Settings(_env_file=None)
        assert s.max_blocked_retries == 5
        assert s.quorum_fraction == 0.75


class TestRemoteAgents:
    def test_empty_string(self):
        assert Settings(_env_file=None, remote_agents="").get_remote_agents() == []

    def test_multiple(self):
        s = Settings(_env_file=None, remote_agents="http://a:9000/, http://b:9000 ,")
        assert s.get_remote_agents() == ["http://a:9000", "http://b:9000"]


class TestAgentWeights:
    def test_empty(self):
        assert Settings(_env_file=None).get_agent_weights() == {}

    def test_parse(self):
        s = Settings(_env_file=None, agent_weights="Content=1.0, seo=0.8")
        assert s.get_agent_weights() == {"content": 1.0, "seo": 0.8}

    def test_invalid_entry(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, agent_weights="content").get_agent_weights()


class TestBuildCoordinationConfig:
    def test_defaults_match(self):
        config = Settings(_env_file=None).build_coordination_config()
        assert isinstance(config, CoordinationConfig)
        assert config == CoordinationConfig()

    def test_overrides(self):
        s = Settings(
            _env_file=None,
            max_concurrent_goals=8,
            round_timeout_s=2.5,
            min_quorum=2,
            blocked_backoff_s=0.5,
            goal_timeout_s=60,
        )
        config = s.build_coordination_config()
        assert config.max_concurrent_goals == 8
        assert config.round_timeout_s == 2.5
        assert config.min_quorum == 2
        assert config.blocked_backoff_s == 0.5
        assert config.goal_timeout_s == 60.0
