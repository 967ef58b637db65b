"""
Configuration management for coordination-mesh
Environment-based configuration via pydantic-settings
"""
from typing import Dict, List
from pydantic_settings import BaseSettings

from coordmesh.engine.types import CoordinationConfig


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False

    # Mesh Authentication (shared HMAC secret with remote agents)
    mesh_secret: str = "change-me"

    # Remote agents discovered at startup (comma-separated base URLs)
    remote_agents: str = ""
    agent_http_timeout_s: float = 10.0

    # Pipeline Configuration
    max_concurrent_goals: int = 4
    goal_timeout_s: float = 3600.0
    max_replans: int = 2

    # Consensus Configuration
    round_timeout_s: float = 10.0
    quorum_fraction: float = 0.5
    min_quorum: int = 1
    scoring_strategy: str = "confidence"
    agent_weights: str = ""

    # Execution Configuration
    max_blocked_retries: int = 3
    blocked_backoff_s: float = 1.0
    blocked_backoff_max_s: float = 30.0
    phase_call_timeout_s: float = 30.0
    progress_interval_s: float = 0.5

    # Metrics Configuration
    success_window: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = False

    def get_remote_agents(self) -> List[str]:
        """Parse the comma-separated remote agent URLs."""
        return [u.strip().rstrip("/") for u in self.remote_agents.split(",") if u.strip()]

    def get_agent_weights(self) -> Dict[str, float]:
        """Parse ``type=weight`` pairs, e.g. ``content=1.0, seo=0.8``."""
        weights: Dict[str, float] = {}
        for item in self.agent_weights.split(","):
            if not item.strip():
                continue
            name, sep, value = item.partition("=")
            if not sep or not name.strip():
                raise ValueError(f"Invalid agent weight entry: {item.strip()!r}")
            weights[name.strip().lower()] = float(value)
        return weights

    def build_coordination_config(self) -> CoordinationConfig:
        """Map settings onto the engine's CoordinationConfig."""
        return CoordinationConfig(
            max_concurrent_goals=self.max_concurrent_goals,
            round_timeout_s=self.round_timeout_s,
            quorum_fraction=self.quorum_fraction,
            min_quorum=self.min_quorum,
            max_blocked_retries=self.max_blocked_retries,
            blocked_backoff_s=self.blocked_backoff_s,
            blocked_backoff_max_s=self.blocked_backoff_max_s,
            phase_call_timeout_s=self.phase_call_timeout_s,
            progress_interval_s=self.progress_interval_s,
            max_replans=self.max_replans,
            goal_timeout_s=self.goal_timeout_s,
            success_window=self.success_window,
        )


# Global settings instance
settings = Settings()
