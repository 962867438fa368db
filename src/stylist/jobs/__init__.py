"""Background job orchestration: try-on rendering, moodboards, and result handoff."""

from .background import BackgroundJobRunner
from .broker import CompletionNotificationBroker, CompletionStore
from .moodboard import MoodboardAssembler
from .proactive import ProactiveStylingPipeline
from .try_on import TryOnJobRunner

__all__ = [
    "BackgroundJobRunner",
    "CompletionNotificationBroker",
    "CompletionStore",
    "MoodboardAssembler",
    "ProactiveStylingPipeline",
    "TryOnJobRunner",
]
