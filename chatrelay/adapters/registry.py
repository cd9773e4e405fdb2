"""Provider registry: model ids -> adapter family, endpoint and credential."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Callable

from chatrelay.adapters.base import ProviderAdapter
from chatrelay.adapters.gemini import GeminiAdapter
from chatrelay.adapters.openai_compat import OpenAICompatibleAdapter
from chatrelay.config.credentials import get_credential
from chatrelay.config.settings import settings
from chatrelay.core.errors import UnsupportedProviderError
from chatrelay.core.models import ProviderRequestDescriptor, UnifiedChatRequest
from chatrelay.util.logger import logger


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    name: str
    family: str
    aliases: tuple[str, ...]
    patterns: tuple[str, ...]
    base_url: Callable[[], str]
    default_model: Callable[[], str]
    credential_name: str
    requires_credential: bool = True
    # "ollama:llama3" 这类带前缀的 id 去掉前缀后作为上游 model
    model_prefix: str = ""

    def upstream_model(self, provider_id: str) -> str:
        lowered = provider_id.lower()
        if lowered in self.aliases:
            return self.default_model()
        if self.model_prefix and lowered.startswith(self.model_prefix):
            return provider_id[len(self.model_prefix):] or self.default_model()
        return provider_id

    def create_adapter(self, provider_id: str) -> ProviderAdapter:
        model = self.upstream_model(provider_id)
        if self.family == "gemini":
            return GeminiAdapter(provider=self.name, base_url=self.base_url(), model=model)
        return OpenAICompatibleAdapter(
            provider=self.name,
            base_url=self.base_url(),
            model=model,
            requires_credential=self.requires_credential,
        )


# 新增供应商只需要在这里加一行
PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        name="gemini",
        family="gemini",
        aliases=("gemini",),
        patterns=("gemini-*",),
        base_url=lambda: settings.gemini_base_url,
        default_model=lambda: settings.gemini_default_model,
        credential_name="GEMINI_API_KEY",
    ),
    ProviderSpec(
        name="openai",
        family="openai_compat",
        aliases=("chatgpt", "openai"),
        patterns=("gpt-*", "chatgpt-*", "o1*", "o3*", "o4*"),
        base_url=lambda: settings.openai_base_url,
        default_model=lambda: settings.openai_default_model,
        credential_name="OPENAI_API_KEY",
    ),
    ProviderSpec(
        name="deepseek",
        family="openai_compat",
        aliases=("deepseek",),
        patterns=("deepseek-*",),
        base_url=lambda: settings.deepseek_base_url,
        default_model=lambda: settings.deepseek_default_model,
        credential_name="DEEPSEEK_API_KEY",
    ),
    ProviderSpec(
        name="qwen",
        family="openai_compat",
        aliases=("qwen",),
        patterns=("qwen-*", "qwen2*", "qwen3*"),
        base_url=lambda: settings.qwen_base_url,
        default_model=lambda: settings.qwen_default_model,
        credential_name="QWEN_API_KEY",
    ),
    ProviderSpec(
        name="ollama",
        family="openai_compat",
        aliases=("ollama",),
        patterns=("ollama:*",),
        base_url=lambda: f"{settings.ollama_base_url.rstrip('/')}/v1",
        default_model=lambda: settings.ollama_default_model,
        credential_name="OLLAMA_API_KEY",
        requires_credential=False,
        model_prefix="ollama:",
    ),
)


def resolve_provider(provider_id: str) -> ProviderSpec:
    candidate = (provider_id or "").strip().lower()
    if not candidate:
        raise UnsupportedProviderError()
    for spec in PROVIDERS:
        if candidate in spec.aliases:
            return spec
    for spec in PROVIDERS:
        if any(fnmatchcase(candidate, pattern) for pattern in spec.patterns):
            return spec
    logger.info("unsupported provider requested provider_id=%s", provider_id)
    raise UnsupportedProviderError(f"invalid model selected: {provider_id}")


def build_provider_request(
    request: UnifiedChatRequest,
) -> tuple[ProviderSpec, ProviderAdapter, ProviderRequestDescriptor]:
    spec = resolve_provider(request.provider_id)
    adapter = spec.create_adapter(request.provider_id.strip())
    descriptor = adapter.build_request(request, get_credential(spec.credential_name))
    return spec, adapter, descriptor


def describe_providers() -> list[dict[str, object]]:
    return [
        {
            "provider": spec.name,
            "aliases": list(spec.aliases),
            "patterns": list(spec.patterns),
            "default_model": spec.default_model(),
            "credential_configured": get_credential(spec.credential_name) is not None,
            "requires_credential": spec.requires_credential,
        }
        for spec in PROVIDERS
    ]
