"""coordination-mesh: multi-agent goal planning, consensus and execution monitoring."""

__version__ = "1.0.0"
