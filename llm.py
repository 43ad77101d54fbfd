# llm.py
"""
Thin wrapper over google-generativeai.

Every model call in the service goes through `generate_json` (one shot, JSON
reply) or `stream_text` (chunked reply). Both raise `LLMError`; routes turn
that into a 5xx.
"""
import json
import logging
from typing import Any, Dict, Iterator

import google.generativeai as genai

import config

logger = logging.getLogger(__name__)

_configured = False


class LLMError(Exception):
    """Gemini failed, or replied with something that is not JSON."""


class LLMNotConfigured(LLMError):
    pass


def _get_model(json_mode: bool = True) -> "genai.GenerativeModel":
    global _configured

    if not config.GEMINI_API_KEY:
        raise LLMNotConfigured("GEMINI_API_KEY not set in .env")

    if not _configured:
        genai.configure(api_key=config.GEMINI_API_KEY)
        logger.info("Gemini configured, key prefix %s********", config.GEMINI_API_KEY[:4])
        _configured = True

    generation_config = {"response_mime_type": "application/json"} if json_mode else None
    return genai.GenerativeModel(config.GEMINI_MODEL, generation_config=generation_config)


def parse_json_reply(raw_text: str) -> Dict[str, Any]:
    """
    Parse a model reply that should be a JSON object.

    Models sometimes wrap JSON in ``` fences or add a sentence around it, so
    fences are stripped first and the first {...} block is the fallback.
    """
    raw_text = (raw_text or "").strip()

    if raw_text.startswith("```"):
        raw_text = raw_text.strip("`")
        # drop a language tag like "json\n"
        if "\n" in raw_text:
            _, rest = raw_text.split("\n", 1)
            raw_text = rest.strip()

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        start = raw_text.find("{")
        end = raw_text.rfind("}")
        if start == -1 or end <= start:
            raise LLMError(f"Gemini response not valid JSON: {raw_text[:200]}")
        try:
            data = json.loads(raw_text[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMError(f"Gemini response not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise LLMError("Gemini response is not a JSON object")
    return data


def generate_json(prompt: str) -> Dict[str, Any]:
    model = _get_model()
    try:
        response = model.generate_content(prompt)
        raw_text = (response.text or "").strip()
    except Exception as e:
        raise LLMError(f"Gemini error: {e}") from e

    logger.debug("GEMINI RAW: %s", raw_text)
    return parse_json_reply(raw_text)


def stream_text(prompt: str) -> Iterator[str]:
    """Yield text chunks as Gemini produces them."""
    model = _get_model()
    try:
        for chunk in model.generate_content(prompt, stream=True):
            text = getattr(chunk, "text", "") or ""
            if text:
                yield text
    except LLMError:
        raise
    except Exception as e:
        raise LLMError(f"Gemini error: {e}") from e


def list_models() -> Iterator[str]:
    """Names of the models this key can call (used by `python -m llm`)."""
    _get_model()
    for m in genai.list_models():
        yield m.name


if __name__ == "__main__":
    for name in list_models():
        print(name)
