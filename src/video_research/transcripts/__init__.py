"""Transcript providers and the cascade engine."""

from video_research.transcripts.base import (
    AUTO,
    AttemptOptions,
    ProviderRegistry,
    TranscriptProvider,
    clean_caption_text,
)
from video_research.transcripts.engine import (
    AcquireOptions,
    TranscriptEngine,
    build_registry,
)

__all__ = [
    "AUTO",
    "AcquireOptions",
    "AttemptOptions",
    "ProviderRegistry",
    "TranscriptEngine",
    "TranscriptProvider",
    "build_registry",
    "clean_caption_text",
]
