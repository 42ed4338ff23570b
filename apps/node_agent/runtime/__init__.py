"""Node agent startup and lifecycle orchestration primitives."""

from .config import ConfigError, DrainConfig, NodeAgentConfig, PathsConfig
from .node_agent import AgentState, NodeAgentCompositionRoot

__all__ = ["AgentState", "ConfigError", "DrainConfig", "NodeAgentCompositionRoot", "NodeAgentConfig", "PathsConfig"]
