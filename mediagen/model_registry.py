#!/usr/bin/env python3
"""
model_registry.py - AI/ML API Model Capabilities
═══════════════════════════════════════════════════════════════════════════════

The AI/ML API fronts many providers, each with its own request shape.
This registry records, per model id:
  - whether it edits images (I2I) or generates from text only
  - how many reference images it takes, and under which request key
  - whether images may be sent inline (base64 data URI) or only as public URLs
  - which optional parameters it understands
  - resolution limits
  - whether it is a video model (submit-then-poll endpoint)

Unknown ids get a permissive default so new models still work.

Part of MediaGen v0.1.0
"""
import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict, Tuple, FrozenSet

logger = logging.getLogger(__name__)

# Request keys for ModelParameters-style options
STRENGTH = "strength"
NUM_INFERENCE_STEPS = "num_inference_steps"
GUIDANCE_SCALE = "guidance_scale"
NEGATIVE_PROMPT = "negative_prompt"
SEED = "seed"
NUM_IMAGES = "num_images"
ENABLE_SAFETY_CHECKER = "enable_safety_checker"
WATERMARK = "watermark"
ENHANCE_PROMPT = "enhance_prompt"
DURATION = "duration"
ASPECT_RATIO = "aspect_ratio"
CAMERA_CONTROL = "camera_control"


@dataclass(frozen=True)
class AIMLModel:
    id: str
    is_i2i: bool = False
    max_input_images: int = 0
    supported_params: FrozenSet[str] = frozenset()
    supports_custom_resolution: bool = False
    default_image_size: str = "square_hd"
    image_input_param: str = ""             # "image" | "image_url" | "image_urls" | ""
    accepts_multi_images: bool = False
    accepts_base64: bool = False
    accepts_public_url: bool = False
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    is_video: bool = False

    @property
    def requires_image(self) -> bool:
        return self.is_i2i

    @property
    def text_only(self) -> bool:
        return self.max_input_images == 0


def _model(model_id: str, params=(), **kwargs) -> AIMLModel:
    return AIMLModel(id=model_id, supported_params=frozenset(params), **kwargs)


_MODELS = [
    # ─── image editing ─────────────────────────────────────────────────────
    _model("alibaba/qwen-image-edit", [NEGATIVE_PROMPT, WATERMARK],
           is_i2i=True, max_input_images=1, image_input_param="image",
           accepts_base64=True, accepts_public_url=True),
    _model("bytedance/uso", [STRENGTH, NEGATIVE_PROMPT, NUM_INFERENCE_STEPS, GUIDANCE_SCALE],
           is_i2i=True, max_input_images=3, supports_custom_resolution=True,
           default_image_size="1024x1024", image_input_param="image_urls",
           accepts_multi_images=True, accepts_public_url=True,
           max_width=1440, max_height=1440),
    _model("flux/srpo/image-to-image", [STRENGTH, NUM_INFERENCE_STEPS, GUIDANCE_SCALE],
           is_i2i=True, max_input_images=1, supports_custom_resolution=True,
           default_image_size="1024x1024", image_input_param="image_url",
           accepts_public_url=True, max_width=1440, max_height=1440),
    _model("flux/kontext-pro/image-to-image", [STRENGTH, NUM_INFERENCE_STEPS, GUIDANCE_SCALE],
           is_i2i=True, max_input_images=4, supports_custom_resolution=True,
           default_image_size="1024x1024", image_input_param="image_url",
           accepts_multi_images=True, accepts_public_url=True,
           max_width=1440, max_height=1440),
    _model("openai/gpt-image-1", [STRENGTH, NEGATIVE_PROMPT],
           is_i2i=True, max_input_images=16, default_image_size="square",
           image_input_param="image_urls", accepts_multi_images=True,
           accepts_base64=True, accepts_public_url=True),
    _model("stability/stable-diffusion-v3-medium",
           [NEGATIVE_PROMPT, NUM_INFERENCE_STEPS, GUIDANCE_SCALE],
           is_i2i=True, max_input_images=1, supports_custom_resolution=True,
           default_image_size="1024x1024", image_input_param="image_urls",
           accepts_base64=True, accepts_public_url=True,
           max_width=1536, max_height=1536),
    _model("google/gemini-2.5-flash-image", [NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           is_i2i=True, max_input_images=1, image_input_param="image_urls",
           accepts_base64=True, accepts_public_url=True),
    _model("google/gemini-2.5-flash-image-edit", [NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           is_i2i=True, max_input_images=1, image_input_param="image_urls",
           accepts_base64=True, accepts_public_url=True),
    _model("reve/edit-image", [ENABLE_SAFETY_CHECKER],
           is_i2i=True, max_input_images=1, image_input_param="image",
           accepts_base64=True, accepts_public_url=True),
    _model("bytedance/seedream-v4-edit", [SEED, NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           is_i2i=True, max_input_images=10, image_input_param="image_urls",
           accepts_multi_images=True, accepts_base64=True, accepts_public_url=True),

    # ─── text to image ─────────────────────────────────────────────────────
    _model("flux-pro", [NUM_INFERENCE_STEPS], supports_custom_resolution=True,
           default_image_size="1024x1024", accepts_public_url=True,
           max_width=1440, max_height=1440),
    _model("dall-e-2", default_image_size="1024x1024"),
    _model("imagen-4.0-generate-001", [ENHANCE_PROMPT, NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           default_image_size="1:1"),
    _model("google/imagen-4.0-generate-001", [ENHANCE_PROMPT, NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           default_image_size="1:1"),
    _model("imagen-4.0-fast-generate-001", [ENHANCE_PROMPT, NUM_IMAGES, ENABLE_SAFETY_CHECKER],
           default_image_size="1:1"),
    _model("imagen-4-ultra-generate-preview-06-06",
           [ENHANCE_PROMPT, NUM_IMAGES, ENABLE_SAFETY_CHECKER], default_image_size="1:1"),
    _model("recraft-v3"),
    _model("flux/dev", supports_custom_resolution=True, default_image_size="1024x1024",
           accepts_public_url=True, max_width=1440, max_height=1440),
    _model("bytedance/seedream-v4-text-to-image", [SEED, NUM_IMAGES, ENABLE_SAFETY_CHECKER]),

    # ─── video (submit + poll) ─────────────────────────────────────────────
    _model("kling-video/v1.6/standard/text-to-video",
           [DURATION, ASPECT_RATIO, NEGATIVE_PROMPT, CAMERA_CONTROL], is_video=True),
    _model("kling-video/v1.6/standard/image-to-video",
           [DURATION, NEGATIVE_PROMPT], is_video=True, is_i2i=True,
           max_input_images=1, image_input_param="image_url",
           accepts_base64=True, accepts_public_url=True),
    _model("bytedance/seedance-1-0-lite-t2v", [DURATION, ASPECT_RATIO, SEED], is_video=True),
    _model("bytedance/seedance-1-0-lite-i2v", [DURATION, SEED], is_video=True,
           is_i2i=True, max_input_images=1, image_input_param="image_url",
           accepts_base64=True, accepts_public_url=True),
]

MODELS: Dict[str, AIMLModel] = {m.id: m for m in _MODELS}

_DEFAULT = _model(
    "", [NUM_INFERENCE_STEPS, GUIDANCE_SCALE, NEGATIVE_PROMPT, SEED, NUM_IMAGES,
         ENABLE_SAFETY_CHECKER],
    max_input_images=1, supports_custom_resolution=True,
    default_image_size="1024x1024", image_input_param="image_urls",
    accepts_base64=True, accepts_public_url=True,
)


def model_for(model_id: str) -> AIMLModel:
    """Capabilities for a model id (case-insensitive), with a permissive fallback."""
    lower = model_id.lower()
    for known_id, model in MODELS.items():
        if known_id.lower() == lower:
            return model

    logger.debug(f"[Registry] Unknown AI/ML model '{model_id}', using defaults")
    return replace(
        _DEFAULT,
        id=model_id,
        is_i2i="edit" in lower or "image-to-image" in lower,
        is_video="video" in lower.split('/')[0],
    )


def parse_model_identifier(model_id: str) -> Tuple[str, str]:
    """
    Split a compound model id into (provider, model).

    The provider is the first path segment with any "-video" suffix removed
    ("kling-video/v1.6/..." → "kling"). Ids without a slash are their own
    provider. The model string is passed through unchanged.
    """
    model_id = model_id.strip()
    head = model_id.split('/', 1)[0]
    provider = head[:-len("-video")] if head.endswith("-video") else head
    return provider, model_id


__all__ = ['AIMLModel', 'MODELS', 'model_for', 'parse_model_identifier']
