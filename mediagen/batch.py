#!/usr/bin/env python3
"""
batch.py - Batch Controller
═══════════════════════════════════════════════════════════════════════════════

Turns one prepared payload into an ordered stream of (index, total, artifact).

  - single-artifact backends are called batch_size times; seeded backends
    get a fresh seed per call, written into a cloned workflow graph, and
    the seed is embedded in the caption
  - array-returning backends are called payload.repeat times (1 when the
    model returns batch_size images natively) and every returned artifact
    is fanned out
  - a call that returns several artifacts yields all of them; the running
    total assumes later calls return as many as the latest one

Iteration i is fully yielded before iteration i+1 starts. Any failing
iteration fails the whole run.

Part of MediaGen v0.1.0
"""
import random
import logging
from typing import Optional, Iterator, List, Tuple

from .errors import ApiError
from .models import GenerationRequest, RawArtifact

logger = logging.getLogger(__name__)

MAX_SEED = 2 ** 63 - 1


def caption_with_seed(caption: str, seed: int) -> str:
    return f"{caption} [seed {seed}]" if caption else f"[seed {seed}]"


class BatchController:
    """Repeats or fans out backend calls for one request."""

    def __init__(self, backend, ctx, rng: Optional[random.Random] = None):
        self.backend = backend
        self.ctx = ctx
        self.rng = rng or random.SystemRandom()

    def seeds(self, count: int, base: Optional[int] = None) -> List[int]:
        """`count` distinct seeds; consecutive from `base` when one is pinned."""
        if base is not None:
            return [(base + i) % (MAX_SEED + 1) for i in range(count)]
        seeds: List[int] = []
        while len(seeds) < count:
            seed = self.rng.randint(0, MAX_SEED)
            if seed not in seeds:
                seeds.append(seed)
        return seeds

    def calls_for(self, payload, request: GenerationRequest) -> int:
        """How many times the backend is called for this payload."""
        if self.backend.single_artifact:
            return request.batch_size
        return max(1, getattr(payload, 'repeat', 1))

    def run(self, payload, request: GenerationRequest) -> Iterator[Tuple[int, int, RawArtifact]]:
        calls = self.calls_for(payload, request)
        if self.backend.seeded:
            seeds = self.seeds(calls, request.options.seed)
        else:
            seeds = [None] * calls

        produced = 0
        for call, seed in enumerate(seeds, start=1):
            self.ctx.cancel.check()
            if calls > 1:
                logger.info(f"[Batch] Call {call}/{calls}" + (f" (seed {seed})" if seed is not None else ""))
            artifacts = self.backend.execute(payload, self.ctx, seed=seed)
            if not artifacts:
                raise ApiError(f"provider returned no result for item {produced + 1}")
            # remaining calls are assumed to return as many artifacts as this one
            total = produced + len(artifacts) * (calls - call + 1)
            for artifact in artifacts:
                produced += 1
                if seed is not None:
                    artifact.seed = seed
                    artifact.caption = caption_with_seed(artifact.caption, seed)
                yield produced, total, artifact


__all__ = ['BatchController', 'caption_with_seed', 'MAX_SEED']
