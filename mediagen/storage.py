#!/usr/bin/env python3
"""
storage.py - Output Files + History Store
═══════════════════════════════════════════════════════════════════════════════

  - FileOutputWriter: writes generated_image_{n}.png / generated_video_{n}.mp4,
    n being one past the highest number already present in the directory
  - JsonHistoryStore: history records kept in a JSON list on disk

Part of MediaGen v0.1.0
"""
import os
import re
import json
import logging
import tempfile
from pathlib import Path
from typing import List

from .models import HistoryRecord, MediaKind

logger = logging.getLogger(__name__)


class FileOutputWriter:
    """Persists decoded output under a chosen directory with unique names."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def _next_number(self, prefix: str) -> int:
        pattern = re.compile(rf"^{re.escape(prefix)}_(\d+)\.\w+$")
        highest = 0
        if self.output_dir.exists():
            for entry in self.output_dir.iterdir():
                m = pattern.match(entry.name)
                if m:
                    highest = max(highest, int(m.group(1)))
        return highest + 1

    def save(self, data: bytes, extension: str = "png", kind: MediaKind = MediaKind.IMAGE) -> Path:
        prefix = "generated_video" if kind == MediaKind.VIDEO else "generated_image"
        self.output_dir.mkdir(parents=True, exist_ok=True)
        n = self._next_number(prefix)
        path = self.output_dir / f"{prefix}_{n}.{extension}"
        while path.exists():
            n += 1
            path = self.output_dir / f"{prefix}_{n}.{extension}"
        path.write_bytes(data)
        logger.info(f"[Output] Saved {path} ({len(data)} bytes)")
        return path


class JsonHistoryStore:
    """History sink backed by a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.records: List[HistoryRecord] = []
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding='utf-8'))
                self.records = [HistoryRecord.from_dict(r) for r in raw if isinstance(r, dict)]
            except (ValueError, TypeError) as e:
                logger.warning(f"[History] Could not read {self.path}: {e}")

    def append(self, record: HistoryRecord):
        self.records.append(record)

    def persist(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps([r.to_dict() for r in self.records], indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix='.tmp')
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(data)
        os.replace(tmp, self.path)


class MemoryHistoryStore:
    """History sink kept in memory; `persisted` counts persist() calls."""

    def __init__(self):
        self.records: List[HistoryRecord] = []
        self.persisted = 0

    def append(self, record: HistoryRecord):
        self.records.append(record)

    def persist(self):
        self.persisted += 1


__all__ = ['FileOutputWriter', 'JsonHistoryStore', 'MemoryHistoryStore']
