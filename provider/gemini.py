from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage, ChatMessage, HumanMessage

from config.settings import Settings, get_settings


logger = logging.getLogger("geminichat.provider")

BACKENDS = ("auto", "genai", "langchain")


class Provider(Protocol):
    """Anything that can turn Gemini contents into an (opaque) response tree."""

    async def generate(self, model: str, contents: List[Dict[str, Any]]) -> Any:
        ...


def to_contents(turns: Sequence[Any]) -> List[Dict[str, Any]]:
    """Map relay turns 1:1 onto Gemini contents; roles pass through untouched."""
    return [{"role": turn.role, "parts": [{"text": turn.content}]} for turn in turns]


class GenAIProvider:
    """Adapter for the google-genai SDK (``client.models.generate_content`` style)."""

    def __init__(self, client: Any, temperature: Optional[float] = None, top_p: Optional[float] = None) -> None:
        self._client = client
        self._temperature = temperature
        self._top_p = top_p

    def _config(self) -> Optional[Dict[str, float]]:
        config = {}
        if self._temperature is not None:
            config["temperature"] = self._temperature
        if self._top_p is not None:
            config["top_p"] = self._top_p
        return config or None

    async def generate(self, model: str, contents: List[Dict[str, Any]]) -> Any:
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=self._config(),
        )
        if hasattr(response, "model_dump"):
            return response.model_dump(mode="json", exclude_none=True)
        return response


def to_lc_messages(contents: List[Dict[str, Any]]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for item in contents:
        role = item.get("role")
        text = "\n".join(part.get("text") or "" for part in item.get("parts") or [])
        if role == "user":
            messages.append(HumanMessage(content=text))
        elif role == "model":
            messages.append(AIMessage(content=text))
        else:
            # Keep the caller's label; the model decides what to do with it
            messages.append(ChatMessage(role=str(role), content=text))
    return messages


def _message_to_response(message: BaseMessage) -> Dict[str, Any]:
    content = message.content
    if isinstance(content, str):
        parts = [{"text": content}]
    else:
        parts = []
        for block in content or []:
            if isinstance(block, str):
                parts.append({"text": block})
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                parts.append({"text": block.get("text")})
    return {"candidates": [{"content": {"role": "model", "parts": parts}}]}


class LangChainProvider:
    """Adapter for ``ChatGoogleGenerativeAI`` (``getGenerativeModel`` style)."""

    def __init__(self, api_key: str, temperature: Optional[float] = None, top_p: Optional[float] = None) -> None:
        self._api_key = api_key
        self._temperature = temperature
        self._top_p = top_p

    def _llm(self, model: str) -> Any:
        from langchain_google_genai import ChatGoogleGenerativeAI

        kwargs: Dict[str, Any] = {"model": model, "google_api_key": self._api_key}
        if self._temperature is not None:
            kwargs["temperature"] = self._temperature
        if self._top_p is not None:
            kwargs["top_p"] = self._top_p
        return ChatGoogleGenerativeAI(**kwargs)

    async def generate(self, model: str, contents: List[Dict[str, Any]]) -> Any:
        reply = await self._llm(model).ainvoke(to_lc_messages(contents))
        return _message_to_response(reply)


def _genai_client_class() -> Any:
    try:
        from google import genai
    except ImportError:
        return None
    return getattr(genai, "Client", None)


def resolve_backend(requested: str) -> str:
    backend = (requested or "auto").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unsupported GEMINI_BACKEND '{requested}', expected one of {', '.join(BACKENDS)}")
    if backend == "auto":
        backend = "genai" if _genai_client_class() is not None else "langchain"
    return backend


def build_provider(settings: Settings) -> Optional[Provider]:
    """Create the provider adapter, or None when no credential is configured."""
    if not settings.api_key:
        return None

    backend = resolve_backend(settings.gemini_backend)
    logger.info("Provider backend selected: %s (model=%s)", backend, settings.gemini_model)
    if backend == "genai":
        client_cls = _genai_client_class()
        if client_cls is None:
            raise RuntimeError("GEMINI_BACKEND=genai but the google-genai package is not installed")
        return GenAIProvider(
            client_cls(api_key=settings.api_key),
            temperature=settings.temperature,
            top_p=settings.top_p,
        )
    return LangChainProvider(settings.api_key, temperature=settings.temperature, top_p=settings.top_p)


@lru_cache(maxsize=1)
def get_provider() -> Optional[Provider]:
    return build_provider(get_settings())
