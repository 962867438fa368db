"""Chat orchestration: upstream proxying, stream normalization, and tool calls."""

from .orchestrator import ChatOrchestrationError, ChatOrchestrator

__all__ = ["ChatOrchestrationError", "ChatOrchestrator"]
