"""
Text-generation providers behind one ``call_llm`` entry point.

  openai    -> Chat Completions; ``openai_base_url`` points it at any
               OpenAI-compatible gateway
  anthropic -> Messages API

Keyword mode (``mock``) is handled by the generator and is not a provider.
SDKs are imported on first use, so the service starts without them; every
call is bounded by ``llm_timeout_seconds`` and never retried here.
"""
from __future__ import annotations

import importlib
from types import ModuleType
from typing import Callable

from src.core.config import Settings, get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
}
_MAX_TOKENS = 800


def _api_key(settings: Settings, provider: str) -> str:
    field = f"{provider}_api_key"
    key = getattr(settings, field)
    if not key:
        raise RuntimeError(f"{field} is empty; export {field.upper()} or add it to .env")
    return key


def _sdk(module: str) -> ModuleType:
    try:
        return importlib.import_module(module)
    except ImportError as exc:
        raise RuntimeError(f"Provider SDK '{module}' is missing (pip install {module})") from exc


def _model(settings: Settings, provider: str) -> str:
    return settings.llm_model or DEFAULT_MODELS[provider]


# ── Providers ────────────────────────────────────────────

def _call_openai(system_prompt: str, user_prompt: str, timeout: float) -> str:
    settings = get_settings()
    key = _api_key(settings, "openai")
    client = _sdk("openai").OpenAI(
        api_key=key,
        base_url=settings.openai_base_url or None,
        timeout=timeout,
        max_retries=0,
    )
    completion = client.chat.completions.create(
        model=_model(settings, "openai"),
        temperature=0.0,
        max_tokens=_MAX_TOKENS,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    )
    return completion.choices[0].message.content or ""


def _call_anthropic(system_prompt: str, user_prompt: str, timeout: float) -> str:
    settings = get_settings()
    key = _api_key(settings, "anthropic")
    client = _sdk("anthropic").Anthropic(api_key=key, timeout=timeout, max_retries=0)
    message = client.messages.create(
        model=_model(settings, "anthropic"),
        max_tokens=_MAX_TOKENS,
        system=system_prompt,
        messages=[{"role": "user", "content": user_prompt}],
    )
    return message.content[0].text if message.content else ""


_PROVIDERS: dict[str, Callable[[str, str, float], str]] = {
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


def call_llm(
    system_prompt: str,
    user_prompt: str,
    provider: str | None = None,
    timeout: float | None = None,
) -> str:
    """Return the raw reply text of *provider* (default: ``llm_provider``).

    Raises
    ------
    NotImplementedError
        Unknown provider name.
    RuntimeError
        Missing API key or SDK.
    """
    settings = get_settings()
    name = (provider or settings.llm_provider).lower()
    fn = _PROVIDERS.get(name)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{name}' is not supported (available: {', '.join(_PROVIDERS)})"
        )

    seconds = settings.llm_timeout_seconds if timeout is None else timeout
    logger.info("LLM call provider=%s chars=%d timeout=%.1fs",
                name, len(system_prompt) + len(user_prompt), seconds)
    reply = fn(system_prompt, user_prompt, seconds)
    logger.info("LLM reply provider=%s chars=%d", name, len(reply))
    return reply
