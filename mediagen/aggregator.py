#!/usr/bin/env python3
"""
aggregator.py - Result Aggregator
═══════════════════════════════════════════════════════════════════════════════

Normalises backend artifacts into GenerationResultItems as they arrive and,
only once the whole run has succeeded, hands one HistoryRecord per item to
the history sink (best-effort incremental display, all-or-nothing
persistence).

A shared batch id is assigned only when the run produced more than one item.

Part of MediaGen v0.1.0
"""
import io
import uuid
import logging
from typing import Optional, List

from .errors import DecodeFailed
from .models import (
    GenerationRequest, GenerationResultItem, HistoryRecord, MediaKind, RawArtifact,
)

logger = logging.getLogger(__name__)


def decode_image(data: bytes):
    """Decode image bytes with Pillow, mapping failures to DecodeFailed."""
    from PIL import Image, UnidentifiedImageError

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise DecodeFailed(f"output is not a readable image ({e})")
    return img


class ResultAggregator:
    """Collects the items of one run and commits them to history."""

    def __init__(self, request: GenerationRequest, writer=None, history=None,
                 model: Optional[str] = None, workflow_name: Optional[str] = None):
        self.request = request
        self.writer = writer
        self.history = history
        self.model = model or None
        self.workflow_name = workflow_name or None
        self.items: List[GenerationResultItem] = []
        self.committed = False

    def add(self, artifact: RawArtifact, index: int, total: int) -> GenerationResultItem:
        image = None
        path = None
        if artifact.data is not None:
            if artifact.media_kind == MediaKind.IMAGE:
                image = decode_image(artifact.data)
            if self.writer is not None:
                path = self.writer.save(artifact.data, artifact.extension, artifact.media_kind)

        item = GenerationResultItem(
            caption=artifact.caption,
            image=image,
            path=path,
            index=index,
            total=total,
            media_kind=artifact.media_kind,
            seed=artifact.seed,
        )
        self.items.append(item)
        return item

    def commit(self) -> List[HistoryRecord]:
        """Append one record per item and persist. Called on full success only."""
        total = len(self.items)
        batch_id = str(uuid.uuid4()) if total > 1 else None
        records = []
        for item in self.items:
            records.append(HistoryRecord(
                prompt=self.request.prompt,
                caption=item.caption,
                backend=self.request.backend.value,
                path=str(item.path) if item.path else None,
                model=self.model,
                workflow_name=self.workflow_name,
                batch_id=batch_id,
                index=item.index if batch_id else None,
                total=total if batch_id else None,
            ))

        if self.history is not None and records:
            for record in records:
                self.history.append(record)
            self.history.persist()
            logger.info(f"[History] Saved {len(records)} item(s)"
                        + (f" as batch {batch_id}" if batch_id else ""))
        self.committed = True
        return records

    def discard(self):
        """Drop collected items without touching history."""
        if self.items:
            logger.info(f"[History] Discarding {len(self.items)} item(s) from incomplete run")
        self.items = []


__all__ = ['ResultAggregator', 'decode_image']
