"""
AI-assisted fare estimate.

A provider turns the policy prompt into text; this module bounds the call with a
timeout, pulls the JSON object out of the text and validates it against
AIEstimateResult. The numbers are best-effort and not reproducible across calls;
only the shape of the answer is guaranteed.
"""
from __future__ import annotations
import asyncio
import json
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from fare_engine.errors import InvalidEstimateResponse, ProviderFailure, ProviderTimeout
from fare_engine.generation import build_prompt
from fare_engine.models import AIEstimateResult, EstimateFareInput

logger = logging.getLogger(__name__)

# (prompt, trip) -> raw provider text
TextProvider = Callable[[str, EstimateFareInput], str]

_decoder = json.JSONDecoder()


def extract_json_object(text: str) -> Optional[dict]:
    """First well-formed JSON object embedded in text (models like to wrap JSON in prose or fences)."""
    text = text or ""
    for i, ch in enumerate(text):
        if ch != "{":
            continue
        try:
            obj, _ = _decoder.raw_decode(text, i)
        except ValueError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


def parse_estimate(text: str) -> AIEstimateResult:
    obj = extract_json_object(text)
    if obj is None:
        raise InvalidEstimateResponse(f"no JSON object in provider output: {text[:200]!r}")
    try:
        return AIEstimateResult.model_validate(obj)
    except ValidationError as e:
        raise InvalidEstimateResponse(f"provider output failed schema validation: {e.errors(include_url=False)}") from e


class AIFareEstimator:
    def __init__(self, provider: TextProvider, timeout_s: float = 20.0):
        self.provider = provider
        self.timeout_s = timeout_s

    async def estimate(self, inp: EstimateFareInput) -> AIEstimateResult:
        prompt = build_prompt(inp)
        try:
            # provider work runs in a thread so the event loop (and the scheduled/charter paths) stay free
            text = await asyncio.wait_for(asyncio.to_thread(self.provider, prompt, inp), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            logger.error("Estimate provider timed out after %.1fs", self.timeout_s)
            raise ProviderTimeout(f"provider timed out after {self.timeout_s}s") from e
        except Exception as e:
            logger.exception("Estimate provider failed: %s", e)
            raise ProviderFailure(f"provider error: {e!r}") from e

        try:
            if not isinstance(text, str):
                raise InvalidEstimateResponse(f"provider returned {type(text).__name__}, expected text")
            return parse_estimate(text)
        except InvalidEstimateResponse as e:
            logger.error("Invalid estimate response: %s", e)
            raise
