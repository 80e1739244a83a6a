"""Token-budget aware splitting of long transcripts.

Text-generation APIs cap the number of tokens they emit per request, so a
transcript is cut into line-aligned chunks whose estimated token count stays
under a fraction of that cap before each chunk is sent out.
"""

from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable, Literal

from interview_transcriber.errors import OversizedChunkError
from interview_transcriber.nlp.units import count_units

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], Awaitable[int]]

DEFAULT_UTILIZATION_RATIO = 0.4
DEFAULT_TOLERANCE = 0.05


def expected_chunk_count(total_tokens: int, max_output_tokens: int, utilization_ratio: float) -> int:
    return max(1, math.ceil(total_tokens / (max_output_tokens * utilization_ratio)))


def pack_lines(lines: list[str], ideal_units: float, language: str | None) -> list[list[str]]:
    """Greedily group consecutive lines so that each group holds about `ideal_units` units.

    Blank lines never open a new group; they stay with the text before them.
    """

    groups: list[list[str]] = [[]]
    units = 0
    for line in lines:
        line_units = count_units(line, language)
        if line_units and units and units + line_units > ideal_units:
            groups.append([])
            units = 0
        groups[-1].append(line)
        units += line_units
    return groups


async def segment_text(
    text: str,
    count_tokens: TokenCounter,
    max_output_tokens: int,
    *,
    language: str | None = None,
    utilization_ratio: float = DEFAULT_UTILIZATION_RATIO,
    tolerance: float = DEFAULT_TOLERANCE,
    oversized: Literal["warn", "error"] = "warn",
) -> list[str]:
    """Split `text` into chunks that fit `max_output_tokens * (utilization_ratio + tolerance)`.

    `"\\n".join(result) == text` holds for every input. Errors raised by
    `count_tokens` propagate unchanged and no partial result is returned.
    """

    if max_output_tokens <= 0:
        raise ValueError("max_output_tokens must be positive.")

    total_tokens = await count_tokens(text)
    chunk_count = expected_chunk_count(total_tokens, max_output_tokens, utilization_ratio)
    if chunk_count == 1:
        return [text]

    ideal_units = count_units(text, language) / chunk_count
    groups = pack_lines(text.split("\n"), ideal_units, language)
    limit = max_output_tokens * (utilization_ratio + tolerance)

    index = 0
    while index < len(groups):
        group = groups[index]
        tokens = await count_tokens("\n".join(group))
        while tokens > limit:
            if len(group) <= 1:
                if oversized == "error":
                    raise OversizedChunkError(tokens, math.floor(limit))
                logger.warning(
                    "Chunk %d is a single line of %d tokens (limit %d); sending it as is",
                    index + 1,
                    tokens,
                    math.floor(limit),
                )
                break
            if index + 1 == len(groups):
                groups.append([])
            groups[index + 1].insert(0, group.pop())
            tokens = await count_tokens("\n".join(group))
        index += 1

    logger.debug("Split %d tokens into %d chunks (expected %d)", total_tokens, len(groups), chunk_count)
    return ["\n".join(group) for group in groups]
