"""
valuation_agent/services/llm_client.py

Streaming LLM client for OpenAI and Google Gemini (GenAI).

Design goals:
- Single stream_text(messages, env) API, shaped like a chat-completion call:
  messages are role-tagged dicts ({"role": "system"|"user"|"assistant", "content": ...}).
- content is either a string or a list of OpenAI-style parts:
      {"type": "text", "text": "..."}
      {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,..."}}
  Gemini receives the same parts translated to inline data.
- Nothing is sent until the caller starts iterating StreamTextResult.text_stream().

Requirements / Notes:
- Expects OPENAI_API_KEY and/or GEMINI_API_KEY (see valuation_agent.config).
- LLM_PROVIDER / LLM_MODEL override the defaults below.
"""

from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from valuation_agent.config import Config, cfg
from valuation_agent.services.screenshot_client import parse_data_url

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
MAX_OUTPUT_TOKENS = 2048
TEMPERATURE = 0.0

# Lazy imports to avoid hard dependency at module import time.
# OpenAI clients are cached per API key. google.generativeai keeps one
# process-wide key, so it is reconfigured whenever a different key is seen.
_openai_clients: Dict[Optional[str], Any] = {}
_genai_client = None
_genai_key: Optional[str] = None


def _init_openai(env: Config):
    key = env.OPENAI_API_KEY
    if key in _openai_clients:
        return _openai_clients[key]

    try:
        from openai import AsyncOpenAI
        client = AsyncOpenAI(api_key=key) if key else AsyncOpenAI()
        _openai_clients[key] = client
        logger.debug("OpenAI client initialized")
        return client
    except Exception as e:
        logger.debug("OpenAI client not initialized: %s", e)
        return None


def _init_genai(env: Config):
    global _genai_client, _genai_key
    if _genai_client is not None and _genai_key == env.GEMINI_API_KEY:
        return _genai_client

    try:
        import google.generativeai as genai
        genai.configure(api_key=env.GEMINI_API_KEY)
        _genai_client = genai
        _genai_key = env.GEMINI_API_KEY
        logger.debug("google.generativeai client initialized")
        return _genai_client
    except Exception as e:
        logger.debug("Gemini client not initialized: %s", e)
        _genai_client = None
        _genai_key = None
        return None


def resolve_provider(env: Config) -> Tuple[str, str]:
    """
    Pick (provider, model). Explicit LLM_PROVIDER wins; otherwise prefer Gemini
    if a key is configured, else OpenAI.
    """
    provider = env.LLM_PROVIDER
    if not provider:
        if env.GEMINI_API_KEY:
            provider = "gemini"
        elif env.OPENAI_API_KEY:
            provider = "openai"
        else:
            raise RuntimeError("No LLM provider configured (set GEMINI_API_KEY or OPENAI_API_KEY in env)")

    provider = provider.lower()
    if provider == "openai":
        return provider, env.LLM_MODEL or DEFAULT_OPENAI_MODEL
    if provider == "gemini":
        return provider, env.LLM_MODEL or DEFAULT_GEMINI_MODEL
    raise ValueError(f"Unsupported provider: {provider}")


def _content_parts(content: Any) -> List[Dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content or [])


def to_gemini_contents(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Convert chat messages to (system_instruction, contents) for google.generativeai.
    """
    system_parts: List[str] = []
    contents: List[Dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role", "user")
        parts = _content_parts(msg.get("content"))
        if role == "system":
            system_parts.extend(p.get("text", "") for p in parts if p.get("type") == "text")
            continue
        gemini_parts: List[Any] = []
        for p in parts:
            if p.get("type") == "text":
                gemini_parts.append(p.get("text", ""))
            elif p.get("type") == "image_url":
                url = (p.get("image_url") or {}).get("url", "")
                gemini_parts.append(parse_data_url(url))
        contents.append({"role": "model" if role == "assistant" else "user", "parts": gemini_parts})
    system_instruction = "\n\n".join(system_parts) if system_parts else None
    return system_instruction, contents


async def _stream_openai(messages: List[Dict[str, Any]], model: str, env: Config) -> AsyncIterator[str]:
    client = _init_openai(env)
    if not client:
        raise RuntimeError("OpenAI SDK not available or OPENAI_API_KEY missing")

    stream = await client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=TEMPERATURE,
        max_tokens=MAX_OUTPUT_TOKENS,
        stream=True,
    )
    async for chunk in stream:
        if not chunk.choices:
            continue
        delta = chunk.choices[0].delta
        text = getattr(delta, "content", None)
        if text:
            yield text


async def _stream_gemini(messages: List[Dict[str, Any]], model: str, env: Config) -> AsyncIterator[str]:
    genai = _init_genai(env)
    if not genai:
        raise RuntimeError("Gemini/GenAI SDK not available or GEMINI_API_KEY missing")

    system_instruction, contents = to_gemini_contents(messages)
    model_instance = genai.GenerativeModel(model, system_instruction=system_instruction)
    response = await model_instance.generate_content_async(
        contents,
        generation_config=genai.GenerationConfig(
            max_output_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
        ),
        stream=True,
    )
    async for chunk in response:
        try:
            text = chunk.text
        except ValueError:
            # chunk without text parts (e.g. a safety-only candidate)
            continue
        if text:
            yield text


class StreamTextResult:
    """Handle to a not-yet-started streaming completion."""

    def __init__(self, messages: List[Dict[str, Any]], env: Config):
        self.messages = messages
        self.env = env

    async def text_stream(self) -> AsyncIterator[str]:
        provider, model = resolve_provider(self.env)
        logger.info("Streaming completion from %s (model=%s, messages=%d)", provider, model, len(self.messages))
        if provider == "openai":
            source = _stream_openai(self.messages, model, self.env)
        else:
            source = _stream_gemini(self.messages, model, self.env)
        async for text in source:
            yield text


def stream_text(messages: List[Dict[str, Any]], env: Optional[Config] = None) -> StreamTextResult:
    return StreamTextResult(messages, env or cfg)
