from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from interview_transcriber.clients.gemini import GeminiClient
from interview_transcriber.nlp.prompts import build_proofread_prompt
from interview_transcriber.nlp.segmenter import (
    DEFAULT_TOLERANCE,
    DEFAULT_UTILIZATION_RATIO,
    segment_text,
)
from interview_transcriber.tasks import gather_or_cancel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProofreadModel:
    name: str
    model_id: str
    max_output_tokens: int


PROOFREAD_MODELS: dict[str, ProofreadModel] = {
    "gemini-2.5-pro": ProofreadModel("Gemini 2.5 Pro", "gemini-2.5-pro", 65_536),
    "gemini-2.5-flash": ProofreadModel("Gemini 2.5 Flash", "gemini-2.5-flash", 65_536),
    "gemini-2.0-flash": ProofreadModel("Gemini 2.0 Flash", "gemini-2.0-flash", 8_192),
}


def resolve_proofread_model(model_key: str) -> ProofreadModel:
    key = model_key.lower().strip()
    if key not in PROOFREAD_MODELS:
        allowed = ", ".join(sorted(PROOFREAD_MODELS))
        raise ValueError(f"Unsupported proofread model '{model_key}'. Allowed: {allowed}")
    return PROOFREAD_MODELS[key]


class Proofreader:
    def __init__(
        self,
        client: GeminiClient,
        *,
        utilization_ratio: float = DEFAULT_UTILIZATION_RATIO,
        tolerance: float = DEFAULT_TOLERANCE,
        oversized: Literal["warn", "error"] = "warn",
    ) -> None:
        self.client = client
        self.utilization_ratio = utilization_ratio
        self.tolerance = tolerance
        self.oversized = oversized

    async def proofread(self, text: str, *, language: str | None, model_key: str) -> str:
        """Proofread `text` chunk by chunk so every request stays under the model's output cap."""

        model = resolve_proofread_model(model_key)

        async def count_tokens(chunk: str) -> int:
            return await self.client.count_tokens(model.model_id, chunk)

        chunks = await segment_text(
            text,
            count_tokens,
            model.max_output_tokens,
            language=language,
            utilization_ratio=self.utilization_ratio,
            tolerance=self.tolerance,
            oversized=self.oversized,
        )
        logger.info("Proofreading %d chunk(s) with %s", len(chunks), model.name)

        prompt = build_proofread_prompt(language)
        results = await gather_or_cancel(
            *(self._proofread_chunk(chunk, prompt, model) for chunk in chunks)
        )
        return "\n".join(results)

    async def _proofread_chunk(self, chunk: str, prompt: str, model: ProofreadModel) -> str:
        if not chunk.strip():
            return chunk
        result = await self.client.generate_content(
            model.model_id,
            [{"text": prompt}, {"text": chunk}],
            max_output_tokens=model.max_output_tokens,
        )
        return result.strip()
