"""
plainsub.llm.refine - Batch subtitle refinement.

Sends cues to the LLM in numbered batches ("[12] text" per line) and writes
back whatever lines come back with a number from the batch. Refinement
never fails a run: a batch whose request fails or whose answer cannot be
read keeps its original text.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence

from plainsub.cancellation import CancellationToken, check_cancelled
from plainsub.exceptions import RefinementError
from plainsub.llm.templates import PromptTemplateManager
from plainsub.models import TranscriptionResult
from plainsub.utils import chunked

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
REFINE_TEMPLATE = "refine.txt"

LINE_RE = re.compile(r"^\[\s*(\d+)\s*\]\s*(.*)$")


def format_batch(results: Sequence[TranscriptionResult]) -> str:
    """Frame cues as one `[sequence] text` line each."""
    return "\n".join(f"[{r.sequence}] {r.text}" for r in results)


def parse_batch_response(response: str) -> dict[int, str]:
    """Read `[sequence] text` lines back out of an LLM answer.

    Lines without a numeric bracket prefix are ignored, as are lines whose
    text is empty. When a number appears twice, the last line wins.
    """
    corrections: dict[int, str] = {}
    for line in response.splitlines():
        match = LINE_RE.match(line.strip())
        if not match:
            continue
        text = match.group(2).strip()
        if text:
            corrections[int(match.group(1))] = text
    return corrections


def apply_corrections(
    batch: Sequence[TranscriptionResult], corrections: Mapping[int, str]
) -> int:
    """Replace the text of cues whose sequence number was corrected.

    Returns:
        Number of cues whose text changed
    """
    changed = 0
    for result in batch:
        refined = corrections.get(result.sequence)
        if refined is not None and refined != result.text:
            result.text = refined
            changed += 1
    return changed


def build_prompt(
    batch: Sequence[TranscriptionResult],
    template_manager: PromptTemplateManager,
    language: str | None = None,
) -> str:
    return template_manager.render(
        REFINE_TEMPLATE,
        {"SEGMENTS": format_batch(batch), "LANGUAGE": language},
    )


def refine_results(
    results: Sequence[TranscriptionResult],
    client,
    batch_size: int = DEFAULT_BATCH_SIZE,
    template_manager: PromptTemplateManager | None = None,
    language: str | None = None,
    cancel: CancellationToken | None = None,
    progress: Callable[[float], None] | None = None,
) -> dict[str, int]:
    """Refine cue text in place, one LLM request per batch.

    Args:
        results: Cues to refine; their text is rewritten in place
        client: LLMClient (anything with `complete(prompt) -> str`)
        batch_size: Cues per request
        template_manager: Prompt templates (bundled ones by default)
        language: Optional language hint for the prompt
        cancel: Optional cancellation token, checked between batches
        progress: Optional fraction-complete callback

    Returns:
        Dict with 'batches', 'failed_batches', 'changed' counts

    Raises:
        PipelineCancelled: If `cancel` is triggered between batches
    """
    template_manager = template_manager or PromptTemplateManager()
    batches = list(chunked(results, batch_size))
    summary = {"batches": len(batches), "failed_batches": 0, "changed": 0}

    for index, batch in enumerate(batches, start=1):
        check_cancelled(cancel)

        prompt = build_prompt(batch, template_manager, language)
        try:
            response = client.complete(prompt)
        except RefinementError as e:
            logger.warning("Refinement batch %d/%d failed: %s", index, len(batches), e)
            summary["failed_batches"] += 1
        else:
            corrections = parse_batch_response(response)
            if corrections:
                summary["changed"] += apply_corrections(batch, corrections)
            else:
                logger.warning(
                    "Refinement batch %d/%d returned no usable lines", index, len(batches)
                )
                summary["failed_batches"] += 1

        if progress:
            progress(index / len(batches))

    return summary
