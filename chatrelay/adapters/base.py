"""Provider adapter contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from chatrelay.core.models import ProviderRequestDescriptor, UnifiedChatRequest
from chatrelay.core.stream_utils import PassthroughNormalizer, StreamNormalizer


class ProviderAdapter(ABC):
    """Translate unified requests into one provider family's wire format.

    ``model`` is the upstream model name, ``base_url`` has no trailing slash.
    """

    name = "base"
    native_stream_is_canonical = True

    def __init__(self, *, provider: str, base_url: str, model: str) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.model = model

    @abstractmethod
    def build_request(self, request: UnifiedChatRequest, credential: str | None) -> ProviderRequestDescriptor:
        """Return the upstream call; must not perform I/O or mutate *request*."""

    @abstractmethod
    def unwrap_reply(self, body: Any) -> str:
        """Extract reply text from a buffered upstream JSON body."""

    def new_stream_normalizer(self) -> StreamNormalizer:
        return PassthroughNormalizer()
