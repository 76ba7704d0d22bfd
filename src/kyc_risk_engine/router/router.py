import logging
import os

from crewai import LLM
from openai import OpenAI, OpenAIError

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("KYC_LLM_MODEL", "gpt-4o-mini")
FALLBACK_MODEL = os.getenv("KYC_LLM_FALLBACK_MODEL", "gpt-4.1-mini")
PING_ON_START = os.getenv("KYC_LLM_PING", "false").lower() in ("1", "true", "yes")


def _ping_openai(model: str) -> bool:
    """Ping OpenAI model with minimal request."""
    try:
        client = OpenAI()
        resp = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=1,
            temperature=0,
        )
        return bool(resp and resp.choices)
    except OpenAIError as e:
        raise RuntimeError(f"OpenAI Ping test failed: {e}") from e


def llmrouter(model_name: str = "", temperature: float = 0.05, ping: bool = PING_ON_START) -> LLM:
    """
    Simple LLM Router:
        - Use model_name, else KYC_LLM_MODEL (gpt-4o-mini).
        - With ping enabled, a failed ping falls back to KYC_LLM_FALLBACK_MODEL.
    """
    model = model_name or DEFAULT_MODEL
    if not ping:
        return LLM(model=model, temperature=temperature)
    try:
        # gpt-4o-mini   1M Token, Input $ 0.15 Output $0.6
        # gpt-4.1-mini  1M Token, Input $ 0.4 Output $1.6
        _ping_openai(model)
        return LLM(model=model, temperature=temperature)
    except RuntimeError as exc:
        LOGGER.warning("LLM %s unavailable, falling back to %s: %s", model, FALLBACK_MODEL, exc)
        return LLM(model=FALLBACK_MODEL, temperature=temperature)
