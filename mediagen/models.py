#!/usr/bin/env python3
"""
models.py - Generation Data Model
═══════════════════════════════════════════════════════════════════════════════

Plain dataclasses passed between the orchestration stages:
  - GenerationRequest (immutable once submitted)
  - GenerationOptions (backend-specific knobs)
  - ReferenceImage, NodeInfo
  - RawArtifact (backend output before aggregation)
  - GenerationResultItem, ProgressState, HistoryRecord

Part of MediaGen v0.1.0
"""
import io
import uuid
import time
import logging
from enum import Enum
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Tuple

logger = logging.getLogger(__name__)


class BackendType(Enum):
    """Supported generation services."""
    GEMINI = "gemini"
    COMFYUI = "comfyui"
    GROK = "grok"
    AIMLAPI = "aimlapi"


class MediaKind(Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class ReferenceImage:
    """An input image, optionally with the bytes it was loaded from."""
    image: Any = None                       # PIL.Image.Image
    original_data: Optional[bytes] = None
    path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path) -> 'ReferenceImage':
        from PIL import Image

        path = Path(path)
        data = path.read_bytes()
        img = Image.open(io.BytesIO(data))
        img.load()
        return cls(image=img, original_data=data, path=path)

    @property
    def name(self) -> str:
        return self.path.name if self.path else "input.png"


@dataclass(frozen=True)
class GenerationOptions:
    """Backend-specific option set. Unused fields are ignored per backend."""
    model: str = ""
    # Resolution
    width: Optional[int] = None
    height: Optional[int] = None
    image_size: str = "square_hd"
    aspect_ratio: str = "16:9"
    # Sampling
    strength: float = 0.8
    num_inference_steps: int = 50
    guidance_scale: float = 7.5
    negative_prompt: str = ""
    seed: Optional[int] = None
    num_images: int = 1
    enable_safety_checker: bool = True
    watermark: bool = False
    enhance_prompt: bool = True
    # Video
    duration: int = 5
    camera_control: Optional[Dict[str, Any]] = None
    # Queue-based workflow selection
    workflow: Any = None                    # WorkflowGraph
    workflow_name: str = ""
    prompt_node_id: Optional[str] = None
    image_node_ids: Tuple[str, ...] = ()
    output_node_id: Optional[str] = None


@dataclass(frozen=True)
class GenerationRequest:
    """One user submission. Lives for exactly one orchestration run."""
    prompt: str
    backend: BackendType
    images: Tuple[ReferenceImage, ...] = ()
    options: GenerationOptions = field(default_factory=GenerationOptions)
    batch_size: int = 1

    def __post_init__(self):
        if not isinstance(self.backend, BackendType):
            object.__setattr__(self, 'backend', BackendType(self.backend))
        if not isinstance(self.images, tuple):
            object.__setattr__(self, 'images', tuple(self.images))
        if self.batch_size < 1:
            object.__setattr__(self, 'batch_size', 1)


@dataclass
class NodeInfo:
    """A selectable workflow node (prompt, output or image node)."""
    id: str
    label: str
    prompt_text: str = ""


@dataclass
class RawArtifact:
    """Provider output for one item, before it is written or decoded."""
    data: Optional[bytes]
    caption: str = ""
    mime_type: str = "image/png"
    media_kind: MediaKind = MediaKind.IMAGE
    seed: Optional[int] = None

    @property
    def extension(self) -> str:
        return {
            "image/png": "png",
            "image/jpeg": "jpg",
            "image/webp": "webp",
            "image/gif": "gif",
            "video/mp4": "mp4",
            "video/webm": "webm",
        }.get(self.mime_type, "mp4" if self.media_kind == MediaKind.VIDEO else "png")


@dataclass
class GenerationResultItem:
    """One artifact of a completed (or in-progress) run."""
    caption: str
    image: Any = None                       # PIL.Image.Image, None for video / missing
    path: Optional[Path] = None
    index: int = 1
    total: int = 1
    media_kind: MediaKind = MediaKind.IMAGE
    seed: Optional[int] = None


@dataclass
class ProgressState:
    """Snapshot of the progress cell."""
    fraction: float = 0.0
    completed: bool = False


@dataclass
class HistoryRecord:
    """One persisted history entry."""
    prompt: str
    caption: str
    backend: str
    path: Optional[str] = None
    timestamp: float = 0.0
    model: Optional[str] = None
    workflow_name: Optional[str] = None
    batch_id: Optional[str] = None
    index: Optional[int] = None
    total: Optional[int] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = uuid.uuid4().hex[:12]
        if not self.timestamp:
            self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['date'] = datetime.fromtimestamp(self.timestamp).isoformat(timespec='seconds')
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'HistoryRecord':
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        return cls(**known)


__all__ = [
    'BackendType', 'MediaKind', 'ReferenceImage', 'GenerationOptions',
    'GenerationRequest', 'NodeInfo', 'RawArtifact', 'GenerationResultItem',
    'ProgressState', 'HistoryRecord',
]
