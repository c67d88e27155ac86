"""Model-backed extraction of ICD-10/CPT codes and report summaries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from coding_api.config import ExtractorConfig

logger = logging.getLogger(__name__)

CODES_SYSTEM_PROMPT = "Medical coding specialist. Return only JSON."
SUMMARY_SYSTEM_PROMPT = "Return only valid JSON."

CODES_TEMPLATE = (
    "Extract ICD-10/CPT codes from:\nHP: {hp_text}\nOP: {op_text}\n\n"
    'Return JSON: {{"admit_dx":"","pdx":"","sdx":[],"cpt":[],"modifier":""}}'
)
HP_SUMMARY_TEMPLATE = (
    "Analyze HP report:\n{text}\n\n"
    'Return JSON: {{"chief_complaint":"","history_of_present_illness":"",'
    '"past_medical_history":[],"medications":[],"allergies":[],'
    '"vital_signs":{{"bp":"","hr":"","temp":"","spo2":""}},'
    '"physical_exam_summary":"","assessment":""}}'
)
OP_SUMMARY_TEMPLATE = (
    "Analyze OP report:\n{text}\n\n"
    'Return JSON: {{"procedure_performed":[],"indication":"","anesthesia":"",'
    '"findings":{{}},"specimens":"","complications":"",'
    '"estimated_blood_loss":"","disposition":"","recommendations":[]}}'
)


class CodeExtractionError(RuntimeError):
    """Raised when the model fails to return a usable coding payload."""


@dataclass
class ExtractedCodes:
    """Raw coding payload returned by the model.

    Args:
        payload: Decoded JSON object; field shapes are not guaranteed.
        tokens_used: Total tokens billed for the call.
    """

    payload: dict[str, Any] = field(default_factory=dict)
    tokens_used: int = 0


class CodeExtractor(Protocol):
    """Interface for services that propose codes and summarize reports."""

    async def extract_codes(self, hp_text: str, op_text: str) -> ExtractedCodes:
        ...

    async def summarize_history(self, text: str) -> dict[str, Any] | None:
        ...

    async def summarize_operative(self, text: str) -> dict[str, Any] | None:
        ...


def _parse_json_object(content: str | None) -> dict[str, Any]:
    try:
        payload = json.loads((content or "").strip())
    except json.JSONDecodeError as exc:
        raise CodeExtractionError(f"Invalid JSON returned: {exc}") from exc
    if not isinstance(payload, dict):
        raise CodeExtractionError("Model response is not a JSON object")
    return payload


class OpenAICodeExtractor:
    """CodeExtractor backed by the OpenAI chat completions API in JSON mode."""

    def __init__(
        self, config: ExtractorConfig, client: AsyncOpenAI | None = None
    ) -> None:
        self.config = config
        self._client = client or AsyncOpenAI(timeout=config.timeout)
        self._complete = retry(
            reraise=True,
            stop=stop_after_attempt(config.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(OpenAIError),
        )(self._complete_once)

    async def _complete_once(
        self, system: str, prompt: str, max_tokens: int, temperature: float
    ) -> tuple[dict[str, Any], int]:
        response = await self._client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        tokens = response.usage.total_tokens if response.usage else 0
        return _parse_json_object(content), tokens

    async def extract_codes(self, hp_text: str, op_text: str) -> ExtractedCodes:
        """Ask the model for admit/principal/secondary diagnoses, CPT and modifier."""
        prompt = CODES_TEMPLATE.format(hp_text=hp_text, op_text=op_text)
        try:
            payload, tokens = await self._complete(
                CODES_SYSTEM_PROMPT, prompt, 500, 0.0
            )
        except OpenAIError as exc:
            raise CodeExtractionError(f"OpenAI request failed: {exc}") from exc
        return ExtractedCodes(payload=payload, tokens_used=tokens)

    async def _summarize(self, template: str, text: str) -> dict[str, Any] | None:
        try:
            payload, _ = await self._complete(
                SUMMARY_SYSTEM_PROMPT, template.format(text=text), 1000, 0.1
            )
        except (OpenAIError, CodeExtractionError) as exc:
            logger.warning("Report summary failed: %s", exc)
            return None
        return payload

    async def summarize_history(self, text: str) -> dict[str, Any] | None:
        """Summarize a history & physical report."""
        return await self._summarize(HP_SUMMARY_TEMPLATE, text)

    async def summarize_operative(self, text: str) -> dict[str, Any] | None:
        """Summarize an operative report."""
        return await self._summarize(OP_SUMMARY_TEMPLATE, text)
