#!/usr/bin/env python3
"""
prompt_file.py - Prompt File Batches
═══════════════════════════════════════════════════════════════════════════════

Runs a newline-separated prompt file through the orchestrator, one request
per line, over an inclusive 1-based start/end range:
  - blank lines are skipped and do not count towards line numbers
  - every prompt in the file is screened before anything is sent
  - a failing prompt is recorded as (index, prompt, error) and the run
    moves on to the next one
  - cancel() stops the current request and skips the rest

Usage:
    run = orch.submit_prompt_file("prompts.txt", template, start=2, end=5)
    for item in run:
        show(item)
    for failure in run.failures:
        print(failure)

Part of MediaGen v0.1.0
"""
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, List, Iterator, Union

from .errors import GenerationError, InvalidInput
from .models import GenerationRequest, GenerationResultItem
from .progress import CancelToken
from .utils_sanitize import sanitize_prompt

logger = logging.getLogger(__name__)


def load_prompt_file(path: Union[str, Path]) -> List[str]:
    """Non-blank lines of a prompt file."""
    path = Path(path)
    try:
        text = path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidInput(f"cannot read prompt file {path.name} ({e})")
    return [line.strip() for line in text.splitlines() if line.strip()]


@dataclass
class PromptFailure:
    """A prompt that did not complete."""
    index: int
    prompt: str
    error: GenerationError

    def __str__(self) -> str:
        return f"{self.index}: {self.prompt} - {self.error.summary}"


class PromptFileRun:
    """Iterates the items of every prompt in range, collecting failures."""

    def __init__(self, orchestrator, prompts: List[str], template: GenerationRequest,
                 start: int = 1, end: Optional[int] = None, safety=None):
        if not prompts:
            raise InvalidInput("prompt file has no prompts")
        end = len(prompts) if end is None else min(end, len(prompts))
        if start < 1 or start > len(prompts):
            raise InvalidInput(f"start {start} is outside 1..{len(prompts)}")
        if end < start:
            raise InvalidInput(f"end {end} is before start {start}")

        rejected = []
        for i, prompt in enumerate(prompts, start=1):
            _, accepted, reason = sanitize_prompt(prompt, safety)
            if not accepted:
                rejected.append(f"{i} ({reason})")
        if rejected:
            raise InvalidInput(f"prompt(s) rejected: {', '.join(rejected)}")

        self.orchestrator = orchestrator
        self.prompts = prompts
        self.template = template
        self.start = start
        self.end = end
        self.cancel_token = CancelToken()
        self.failures: List[PromptFailure] = []
        self.completed = 0

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __iter__(self) -> Iterator[GenerationResultItem]:
        for index in range(self.start, self.end + 1):
            if self.cancel_token.cancelled:
                logger.info(f"[PromptFile] Cancelled before prompt {index}")
                return
            prompt = self.prompts[index - 1]
            logger.info(f"[PromptFile] Prompt {index}/{self.end}: {prompt[:60]}")
            request = replace(self.template, prompt=prompt)
            try:
                yield from self.orchestrator.submit(request)
            except GenerationError as e:
                logger.warning(f"[PromptFile] Prompt {index} failed: {e.summary}")
                self.failures.append(PromptFailure(index, prompt, e))
                continue
            if not self.cancel_token.cancelled:
                self.completed += 1

        if self.failures:
            logger.warning(f"[PromptFile] {len(self.failures)} of {len(self)} prompt(s) failed")
        else:
            logger.info(f"[PromptFile] All {len(self)} prompt(s) completed")


__all__ = ['PromptFileRun', 'PromptFailure', 'load_prompt_file']
