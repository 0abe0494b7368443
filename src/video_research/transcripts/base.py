"""Transcript provider contract and the ordered provider registry."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

import structlog
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

AUTO = "auto"

_CUE_RE = re.compile(r"\[.*?\]")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_caption_text(text: str) -> str:
    """Drop bracketed cues such as ``[Music]`` and collapse whitespace."""
    return _WHITESPACE_RE.sub(" ", _CUE_RE.sub("", text)).strip()


class AttemptOptions(BaseModel):
    """Per-attempt options handed to every provider."""

    timeout: float = Field(default=15.0, gt=0)
    duration_seconds: int | None = Field(
        default=None, description="Known video length, used for paid-minute estimates."
    )
    include_speaker_labels: bool = False


class TranscriptProvider(ABC):
    """One technique for turning a video id into transcript text.

    Subclasses raise ``ProviderFailure`` (or a subclass) when an attempt
    does not produce text.
    """

    name: ClassVar[str]
    paid: ClassVar[bool] = False
    description: ClassVar[str] = ""

    def is_configured(self) -> bool:
        """Whether the provider has what it needs (credentials) to run."""
        return True

    @abstractmethod
    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        """Return transcript text for ``video_id``."""

    async def aclose(self) -> None:  # noqa: B027
        """Release network resources held by the provider."""


class ProviderRegistry:
    """Providers keyed by name, iterated in a fixed configured order.

    Args:
        providers: Provider instances to register.
        order: Cascade order by name; defaults to registration order.
    """

    def __init__(
        self,
        providers: Iterable[TranscriptProvider] = (),
        order: Sequence[str] | None = None,
    ) -> None:
        self._providers: dict[str, TranscriptProvider] = {}
        for provider in providers:
            self.register(provider)
        self._order: list[str] = list(order) if order is not None else []

    def register(self, provider: TranscriptProvider) -> None:
        if provider.name in self._providers:
            raise ValueError(f"Provider already registered: {provider.name}")
        self._providers[provider.name] = provider

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[TranscriptProvider]:
        return iter(self._providers.values())

    def get(self, name: str) -> TranscriptProvider | None:
        return self._providers.get(name)

    @property
    def order(self) -> list[str]:
        return self._order or list(self._providers)

    def cascade(self) -> list[TranscriptProvider]:
        """Configured providers in cascade order; unconfigured ones are skipped."""
        providers: list[TranscriptProvider] = []
        for name in self.order:
            provider = self._providers.get(name)
            if provider is None:
                logger.warning("cascade_provider_unknown", provider=name)
                continue
            if provider.is_configured():
                providers.append(provider)
        return providers

    def resolve(self, preferred: str = AUTO) -> list[TranscriptProvider]:
        """Providers to try for ``preferred`` (a provider name or ``"auto"``)."""
        if preferred == AUTO:
            return self.cascade()
        provider = self._providers.get(preferred)
        return [provider] if provider is not None else []

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
