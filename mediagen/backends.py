#!/usr/bin/env python3
"""
backends.py - Generation Backend Strategies
═══════════════════════════════════════════════════════════════════════════════

One strategy per service, all with the same surface:

    build(request)            → payload   (pure, raises before any network I/O)
    prepare(payload, ctx)     → payload   (one-time uploads; default no-op)
    execute(payload, ctx, seed=None) → [RawArtifact]

  - GeminiBackend:  single synchronous generateContent call (x-goog-api-key)
  - ComfyUIBackend: upload → queue → websocket progress + history poll → /view
  - GrokBackend:    bearer-authenticated image call returning an array
  - AIMLBackend:    image models are synchronous, video models submit + poll

ComfyUI and Gemini are called once per batch item (single_artifact = True);
the batch controller repeats them, reseeding ComfyUI each time. Grok and the
AI/ML API fan out natively, except AI/ML models without num_images (and all
video models), whose payload asks for one call per item.

Every HTTP call is preceded by a cancellation check, and every poll sleep
wakes immediately when the run is cancelled.

Part of MediaGen v0.1.0
"""
import time
import uuid
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, List, Tuple, Callable
from urllib.parse import urlparse

import requests

from .errors import (
    GenerationError, InvalidInput, InvalidURL, InvalidConfiguration, NoWorkflow,
    UploadFailed, QueueFailed, FetchFailed, ApiError, ContentBlocked, DecodeFailed,
    api_error, expect_ok, decode_json, check_json_response, response_text,
)
from .image_processing import process_image_for_upload, to_base64, to_data_uri
from .model_registry import NUM_IMAGES, model_for, parse_model_identifier
from .models import (
    BackendType, GenerationRequest, RawArtifact, MediaKind,
)
from .progress import ProgressCell, CancelToken, ProgressChannel
from .workflow_graph import WorkflowGraph

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
GROK_URL = "https://api.x.ai/v1/images/generations"
GROK_DEFAULT_MODEL = "grok-2-image-1212"
AIML_BASE_URL = "https://api.aimlapi.com"
COMFYUI_DEFAULT_URL = "http://localhost:8188"

GEMINI_MAX_IMAGES = 4
GROK_MAX_IMAGES_PER_CALL = 10
GEMINI_BLOCK_REASONS = {"SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}


@dataclass
class RunContext:
    """Per-run state shared by the orchestrator and the active backend."""
    cancel: CancelToken = field(default_factory=CancelToken)
    progress: ProgressCell = field(default_factory=ProgressCell)


@dataclass
class HttpPayload:
    """Request for the JSON-over-HTTP backends."""
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    prompt: str = ""
    model: str = ""
    repeat: int = 1                         # calls per run; >1 when the model returns one result
    # AI/ML API only
    provider: str = ""
    is_video: bool = False
    image_param: str = ""
    multi_image: bool = False
    pending_images: List[Tuple[bytes, str, str]] = field(default_factory=list)


@dataclass
class ComfyPayload:
    """Resolved ComfyUI job: prompt already injected, uploads still pending."""
    graph: WorkflowGraph
    prompt_node_id: str
    prompt: str
    uploads: List[Tuple[str, bytes, str, str]] = field(default_factory=list)
    output_node_id: Optional[str] = None
    workflow_name: str = ""
    model: str = ""


def _validate_http_url(url: str, label: str) -> str:
    if not url:
        raise InvalidConfiguration(f"{label} server URL is not set")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidURL(f"{label} server URL is malformed: {url!r}")
    return url.rstrip('/')


def _b64decode(data: str, what: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailed(f"{what} is not valid base64 ({e})")


# ═══════════════════════════════════════════════════════════════════════════════
# BASE STRATEGY
# ═══════════════════════════════════════════════════════════════════════════════

class GenerationBackend(ABC):
    """Common plumbing: credentials, session, cancellable HTTP."""

    backend_type: BackendType = None
    service_name: Optional[str] = None      # consent gate key, None = local service
    credential_name: Optional[str] = None
    single_artifact = False
    seeded = False

    def __init__(self, config: Dict[str, Any], credentials=None, session=None,
                 image_processor: Optional[Callable] = None):
        self.config = config or {}
        self.credentials = credentials
        self.session = session or requests.Session()
        self.image_processor = image_processor or process_image_for_upload
        self.request_timeout = self.config.get('request_timeout', 120)
        self.name = self.backend_type.value if self.backend_type else "base"

    @abstractmethod
    def build(self, request: GenerationRequest):
        pass

    def prepare(self, payload, ctx: RunContext):
        return payload

    @abstractmethod
    def execute(self, payload, ctx: RunContext, seed: Optional[int] = None) -> List[RawArtifact]:
        pass

    def interrupt(self):
        """Ask the service to stop the running job. No-op for stateless services."""
        pass

    def check_availability(self) -> tuple:
        if self.credential_name and not self._api_key(required=False):
            return False, f"{self.credential_name} API key not set"
        return True, "ready"

    # ─── helpers ───────────────────────────────────────────────────────────

    def _api_key(self, required: bool = True) -> Optional[str]:
        key = self.credentials.get(self.credential_name) if self.credentials else None
        if required and not key:
            raise InvalidConfiguration(f"{self.service_name} API key is not set")
        return key

    def _encode_image(self, ref, fmt: str = "jpeg") -> Tuple[bytes, str]:
        return self.image_processor(
            ref.image, fmt,
            quality=self.config.get('upload_quality', 0.6),
            original_data=ref.original_data,
            max_dimension=self.config.get('max_upload_dimension'),
        )

    def _send(self, ctx: RunContext, method: str, url: str, stage: str,
              error_cls=FetchFailed, **kwargs):
        """Cancellation check, then one HTTP call. Transport errors map to error_cls."""
        ctx.cancel.check()
        kwargs.setdefault('timeout', self.request_timeout)
        try:
            return getattr(self.session, method)(url, **kwargs)
        except requests.RequestException as e:
            logger.error(f"[{self.name}] {stage} failed: {e}")
            raise error_cls(f"{stage}: {e}")

    def _download(self, ctx: RunContext, url: str, stage: str = "download") -> bytes:
        resp = self._send(ctx, 'get', url, stage)
        expect_ok(resp, FetchFailed, stage)
        if not resp.content:
            raise FetchFailed(f"{stage}: empty body", status_code=resp.status_code)
        return resp.content


# ═══════════════════════════════════════════════════════════════════════════════
# GEMINI
# ═══════════════════════════════════════════════════════════════════════════════

class GeminiBackend(GenerationBackend):
    """Google Gemini image model via generateContent."""

    backend_type = BackendType.GEMINI
    service_name = "Gemini"
    credential_name = "gemini"
    single_artifact = True

    def build(self, request: GenerationRequest) -> HttpPayload:
        prompt = request.prompt.strip()
        if not prompt and not request.images:
            raise InvalidInput("prompt is empty")
        if len(request.images) > GEMINI_MAX_IMAGES:
            raise InvalidInput(
                f"Gemini accepts at most {GEMINI_MAX_IMAGES} images, got {len(request.images)}"
            )
        key = self._api_key()
        model = request.options.model or self.config.get('model', GEMINI_DEFAULT_MODEL)
        base = self.config.get('base_url', GEMINI_BASE_URL).rstrip('/')

        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for ref in request.images:
            data, mime = self._encode_image(ref, self.config.get('upload_format', 'jpeg'))
            parts.append({"inline_data": {"mime_type": mime, "data": to_base64(data)}})

        return HttpPayload(
            url=f"{base}/models/{model}:generateContent",
            headers={"x-goog-api-key": key, "Content-Type": "application/json"},
            body={
                "contents": [{"parts": parts}],
                "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
            },
            prompt=prompt,
            model=model,
        )

    def execute(self, payload: HttpPayload, ctx: RunContext, seed=None) -> List[RawArtifact]:
        resp = self._send(ctx, 'post', payload.url, "Gemini request", ApiError,
                          headers=payload.headers, json=payload.body)
        body = check_json_response(resp, "Gemini request")

        feedback = body.get('promptFeedback') or {}
        if feedback.get('blockReason'):
            raise ContentBlocked(f"prompt blocked ({feedback['blockReason']})",
                                 status_code=resp.status_code, body=response_text(resp))

        candidates = body.get('candidates')
        if not isinstance(candidates, list) or not candidates:
            raise DecodeFailed("response has no candidates",
                               status_code=resp.status_code, body=response_text(resp))

        candidate = candidates[0]
        finish = candidate.get('finishReason', '')
        parts = (candidate.get('content') or {}).get('parts') or []
        if finish in GEMINI_BLOCK_REASONS and not parts:
            raise ContentBlocked(f"generation stopped ({finish})",
                                 status_code=resp.status_code, body=response_text(resp))

        texts = []
        images = []
        for part in parts:
            if part.get('text'):
                texts.append(part['text'])
            inline = part.get('inlineData') or part.get('inline_data')
            if inline and inline.get('data'):
                mime = inline.get('mimeType') or inline.get('mime_type') or 'image/png'
                images.append((_b64decode(inline['data'], "Gemini image"), mime))

        caption = "".join(texts) or "No text output."
        if not images:
            logger.warning("[Gemini] Response contained no image")
            return [RawArtifact(data=None, caption="".join(texts) or "No image generated.")]
        return [RawArtifact(data=data, caption=caption, mime_type=mime) for data, mime in images]


# ═══════════════════════════════════════════════════════════════════════════════
# GROK
# ═══════════════════════════════════════════════════════════════════════════════

class GrokBackend(GenerationBackend):
    """xAI image generation (OpenAI-compatible, bearer token)."""

    backend_type = BackendType.GROK
    service_name = "Grok"
    credential_name = "grok"

    def build(self, request: GenerationRequest) -> HttpPayload:
        prompt = request.prompt.strip()
        if not prompt:
            raise InvalidInput("prompt is empty")
        if request.images:
            raise InvalidInput("Grok image generation takes no input images")
        key = self._api_key()
        model = request.options.model or self.config.get('model', GROK_DEFAULT_MODEL)
        n = max(1, min(request.batch_size, GROK_MAX_IMAGES_PER_CALL))

        return HttpPayload(
            url=self.config.get('url', GROK_URL),
            headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
            body={"model": model, "prompt": prompt, "n": n, "response_format": "b64_json"},
            prompt=prompt,
            model=model,
        )

    def execute(self, payload: HttpPayload, ctx: RunContext, seed=None) -> List[RawArtifact]:
        resp = self._send(ctx, 'post', payload.url, "Grok request", ApiError,
                          headers=payload.headers, json=payload.body)
        body = check_json_response(resp, "Grok request")
        data = body.get('data')
        if not isinstance(data, list):
            raise DecodeFailed("response has no data array",
                               status_code=resp.status_code, body=response_text(resp))
        return _fan_out(self, ctx, data, payload.prompt)


def _fan_out(backend: GenerationBackend, ctx: RunContext, entries: List[Any],
             prompt: str) -> List[RawArtifact]:
    """One RawArtifact per returned entry; entries without media stay as placeholders."""
    artifacts = []
    for i, entry in enumerate(entries, start=1):
        entry = entry if isinstance(entry, dict) else {}
        caption = entry.get('revised_prompt') or prompt
        mime = entry.get('content_type') or 'image/png'
        if entry.get('b64_json'):
            artifacts.append(RawArtifact(_b64decode(entry['b64_json'], f"item {i}"),
                                         caption, mime_type=mime))
        elif entry.get('url'):
            data = backend._download(ctx, entry['url'], f"download item {i}")
            artifacts.append(RawArtifact(data, caption, mime_type=mime))
        else:
            logger.warning(f"[{backend.name}] Item {i} has no image payload")
            artifacts.append(RawArtifact(None, f"No output for item {i}"))
    return artifacts


# ═══════════════════════════════════════════════════════════════════════════════
# AI/ML API
# ═══════════════════════════════════════════════════════════════════════════════

class AIMLBackend(GenerationBackend):
    """
    AI/ML API aggregator.

    Image models: POST /v1/images/generations, array response.
    Video models: POST /v2/generate/video/{provider}/generation → id, then
    GET the same endpoint with ?generation_id= every poll_interval seconds
    until status is completed / failed or the wall-clock timeout elapses.
    """

    backend_type = BackendType.AIMLAPI
    service_name = "AI/ML API"
    credential_name = "aimlapi"

    def __init__(self, config, credentials=None, session=None, image_processor=None,
                 uploader=None):
        super().__init__(config, credentials, session, image_processor)
        self.uploader = uploader
        self.base_url = self.config.get('base_url', AIML_BASE_URL).rstrip('/')
        self.poll_interval = self.config.get('poll_interval', 10)
        self.timeout = self.config.get('timeout', 1200)

    def build(self, request: GenerationRequest) -> HttpPayload:
        opts = request.options
        model_id = (opts.model or self.config.get('model', '')).strip()
        if not model_id:
            raise InvalidInput("no AI/ML API model selected")
        prompt = request.prompt.strip()
        if not prompt:
            raise InvalidInput("prompt is empty")

        model = model_for(model_id)
        count = len(request.images)
        if model.requires_image and count == 0:
            raise ApiError(f"{model_id} edits images and requires at least one input image")
        if model.text_only and count:
            raise ApiError(f"{model_id} is text-to-image only and takes no input images")
        if count > model.max_input_images:
            raise ApiError(
                f"{model_id} accepts at most {model.max_input_images} input image(s), got {count}"
            )

        key = self._api_key()
        provider, model_name = parse_model_identifier(model_id)
        body: Dict[str, Any] = {"model": model_name, "prompt": prompt}
        body.update(self._model_params(request, model))

        if model.is_video:
            url = f"{self.base_url}/v2/generate/video/{provider}/generation"
        else:
            url = f"{self.base_url}/v1/images/generations"
            body.update(self._resolution(opts, model))

        payload = HttpPayload(
            url=url,
            headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
            body=body,
            prompt=prompt,
            model=model_id,
            provider=provider,
            repeat=1 if NUM_IMAGES in model.supported_params and not model.is_video
            else request.batch_size,
            is_video=model.is_video,
            image_param=model.image_input_param or "image_urls",
            multi_image=model.image_input_param == "image_urls",
        )

        if count:
            wants_url = (self.uploader is not None and model.accepts_public_url) \
                or not model.accepts_base64
            if wants_url and not model.accepts_public_url:
                raise InvalidInput(f"{model_id} accepts neither inline nor URL images")
            if wants_url and self.uploader is None:
                raise InvalidConfiguration(
                    f"{model_id} only accepts public image URLs; set an ImgBB API key"
                )
            for ref in request.images:
                data, mime = self._encode_image(ref, self.config.get('upload_format', 'jpeg'))
                if wants_url:
                    payload.pending_images.append((data, mime, ref.name))
                else:
                    self._attach_images(payload, [to_data_uri(data, mime)])
        return payload

    def _model_params(self, request: GenerationRequest, model) -> Dict[str, Any]:
        opts = request.options
        candidates = {
            "strength": opts.strength,
            "num_inference_steps": opts.num_inference_steps,
            "guidance_scale": opts.guidance_scale,
            "negative_prompt": opts.negative_prompt or None,
            "seed": opts.seed,
            "num_images": request.batch_size if request.batch_size > 1 else opts.num_images,
            "enable_safety_checker": opts.enable_safety_checker,
            "watermark": opts.watermark,
            "enhance_prompt": opts.enhance_prompt,
            "duration": opts.duration,
            "aspect_ratio": opts.aspect_ratio,
            "camera_control": opts.camera_control,
        }
        return {k: v for k, v in candidates.items()
                if k in model.supported_params and v is not None}

    @staticmethod
    def _resolution(opts, model) -> Dict[str, Any]:
        if model.supports_custom_resolution and opts.width and opts.height:
            width = min(opts.width, model.max_width) if model.max_width else opts.width
            height = min(opts.height, model.max_height) if model.max_height else opts.height
            return {"image_size": {"width": width, "height": height}}
        return {"image_size": opts.image_size or model.default_image_size}

    @staticmethod
    def _attach_images(payload: HttpPayload, refs: List[str]):
        if payload.multi_image:
            payload.body.setdefault(payload.image_param, []).extend(refs)
        else:
            payload.body[payload.image_param] = refs[0]

    def prepare(self, payload: HttpPayload, ctx: RunContext) -> HttpPayload:
        """Upload URL-only reference images to the public host."""
        if not payload.pending_images:
            return payload
        urls = []
        for data, _mime, name in payload.pending_images:
            ctx.cancel.check()
            urls.append(self.uploader.upload(data, name))
        prepared = replace(payload, body=dict(payload.body), pending_images=[])
        self._attach_images(prepared, urls)
        return prepared

    def execute(self, payload: HttpPayload, ctx: RunContext, seed=None) -> List[RawArtifact]:
        if payload.is_video:
            return self._execute_video(payload, ctx)

        resp = self._send(ctx, 'post', payload.url, "AI/ML request", ApiError,
                          headers=payload.headers, json=payload.body)
        body = check_json_response(resp, "AI/ML request")
        entries = body.get('data')
        if entries is None:
            entries = body.get('images')
        if not isinstance(entries, list):
            raise DecodeFailed("response has no images",
                               status_code=resp.status_code, body=response_text(resp))
        return _fan_out(self, ctx, entries, payload.prompt)

    def _execute_video(self, payload: HttpPayload, ctx: RunContext) -> List[RawArtifact]:
        resp = self._send(ctx, 'post', payload.url, "AI/ML video submit", ApiError,
                          headers=payload.headers, json=payload.body)
        body = check_json_response(resp, "AI/ML video submit")
        generation_id = body.get('id') or body.get('generation_id')
        if not generation_id:
            raise DecodeFailed("video submit returned no generation id",
                               status_code=resp.status_code, body=response_text(resp))
        logger.info(f"[AIML] Video job {generation_id} submitted ({payload.model})")

        deadline = time.monotonic() + self.timeout
        auth = {"Authorization": payload.headers["Authorization"]}
        while True:
            ctx.cancel.sleep(self.poll_interval)
            if time.monotonic() >= deadline:
                raise ApiError("no result or timeout")

            resp = self._send(ctx, 'get', payload.url, "AI/ML video poll", ApiError,
                              headers=auth, params={"generation_id": generation_id})
            status_body = check_json_response(resp, "AI/ML video poll")
            status = status_body.get('status', '')
            logger.debug(f"[AIML] Job {generation_id} status: {status}")

            if status == 'completed':
                video = status_body.get('video') or {}
                url = video.get('url') if isinstance(video, dict) else None
                if not url:
                    raise DecodeFailed("completed job has no video url",
                                       status_code=resp.status_code, body=response_text(resp))
                data = self._download(ctx, url, "video download")
                return [RawArtifact(data, payload.prompt, mime_type="video/mp4",
                                    media_kind=MediaKind.VIDEO)]
            if status in ('failed', 'error'):
                raise api_error(
                    status_body.get('message') or "video generation failed",
                    status_code=resp.status_code, body=response_text(resp),
                )


# ═══════════════════════════════════════════════════════════════════════════════
# COMFYUI
# ═══════════════════════════════════════════════════════════════════════════════

class ComfyUIBackend(GenerationBackend):
    """
    ComfyUI server (local or remote).

    Per call:
      1. open the /ws progress channel (before submitting)
      2. POST /prompt with a caller-chosen client_id and prompt_id
      3. poll GET /history/{prompt_id} every poll_interval seconds until
         the entry reports status.completed
      4. GET /view for the chosen output image
      5. close the progress channel
    """

    backend_type = BackendType.COMFYUI
    single_artifact = True
    seeded = True

    def __init__(self, config, credentials=None, session=None, image_processor=None,
                 ws_connect: Optional[Callable] = None):
        super().__init__(config, credentials, session, image_processor)
        self.api_url = self.config.get('url', COMFYUI_DEFAULT_URL)
        self.poll_interval = self.config.get('poll_interval', 2)
        self.timeout = self.config.get('timeout', 600)
        self.ws_connect = ws_connect
        self._running = False

    def check_availability(self) -> tuple:
        try:
            url = _validate_http_url(self.api_url, "ComfyUI")
            resp = self.session.get(f"{url}/system_stats", timeout=5)
            if resp.status_code == 200:
                return True, f"ComfyUI available at {url}"
            return False, f"ComfyUI returned HTTP {resp.status_code}"
        except GenerationError as e:
            return False, e.summary
        except requests.RequestException as e:
            return False, f"Cannot connect to ComfyUI: {e}"

    # ─── build ─────────────────────────────────────────────────────────────

    def build(self, request: GenerationRequest) -> ComfyPayload:
        _validate_http_url(self.api_url, "ComfyUI")
        opts = request.options
        graph = opts.workflow
        if graph is None or not len(graph):
            raise NoWorkflow("load a workflow JSON or PNG before generating")

        graph.require_sampler()
        node_id = graph.prompt_sink_id(opts.prompt_node_id)
        prompt = request.prompt.strip() or graph.prompt_text(node_id).strip()
        if not prompt:
            raise InvalidInput("prompt is empty and the prompt node holds no text")
        resolved = graph.with_prompt(prompt, node_id)

        if opts.output_node_id and opts.output_node_id not in graph:
            raise InvalidInput(f"output node {opts.output_node_id} not found in workflow")

        uploads = []
        if request.images:
            sinks = graph.image_sink_ids(opts.image_node_ids, needed=len(request.images))
            if len(request.images) > len(sinks):
                raise InvalidInput(
                    f"{len(request.images)} images given but only {len(sinks)} image node(s) selected"
                )
            for sink, ref in zip(sinks, request.images):
                data, mime = self._encode_image(ref, "png")
                uploads.append((sink, data, mime, ref.name))

        return ComfyPayload(
            graph=resolved,
            prompt_node_id=node_id,
            prompt=prompt,
            uploads=uploads,
            output_node_id=opts.output_node_id,
            workflow_name=opts.workflow_name,
        )

    # ─── prepare: image uploads ────────────────────────────────────────────

    def prepare(self, payload: ComfyPayload, ctx: RunContext) -> ComfyPayload:
        if not payload.uploads:
            return payload
        assignments = {}
        for node_id, data, mime, name in payload.uploads:
            assignments[node_id] = self._upload_image(ctx, data, mime, name)
        return replace(payload, graph=payload.graph.with_images(assignments), uploads=[])

    def _upload_image(self, ctx: RunContext, data: bytes, mime: str, name: str) -> str:
        """Upload image bytes to ComfyUI's input folder and return the stored name."""
        files = {'image': (name, data, mime)}
        resp = self._send(ctx, 'post', f"{self.api_url.rstrip('/')}/upload/image",
                          "image upload", UploadFailed,
                          files=files, data={'type': 'input', 'overwrite': 'true'})
        expect_ok(resp, UploadFailed, "image upload")
        try:
            stored = resp.json().get('name')
        except (ValueError, AttributeError):
            stored = None
        if not stored:
            raise UploadFailed("server returned no file name",
                               status_code=resp.status_code, body=response_text(resp))
        logger.info(f"[ComfyUI] Uploaded {name} as {stored}")
        return stored

    # ─── execute ───────────────────────────────────────────────────────────

    def execute(self, payload: ComfyPayload, ctx: RunContext, seed: Optional[int] = None) -> List[RawArtifact]:
        graph = payload.graph.reseeded(seed) if seed is not None else payload.graph.clone()
        api_url = self.api_url.rstrip('/')
        client_id = uuid.uuid4().hex
        prompt_id = str(uuid.uuid4())

        ctx.progress.reset()
        channel = ProgressChannel(api_url, client_id, ctx.progress, ctx.cancel,
                                  prompt_id=prompt_id, connect=self.ws_connect)
        channel.open()
        self._running = True
        try:
            prompt_id = self._queue(ctx, graph, client_id, prompt_id)
            entry = self._poll_history(ctx, prompt_id)
            ref, kind = self._select_output(entry, payload.output_node_id)
            data = self._download_output(ctx, ref)
        finally:
            self._running = False
            channel.close()
        ctx.progress.mark_completed()

        filename = ref.get('filename', '')
        mime = "video/mp4" if kind == MediaKind.VIDEO else (
            "image/jpeg" if filename.lower().endswith(('.jpg', '.jpeg')) else "image/png"
        )
        return [RawArtifact(data, payload.prompt, mime_type=mime, media_kind=kind, seed=seed)]

    def _queue(self, ctx: RunContext, graph: WorkflowGraph, client_id: str, prompt_id: str) -> str:
        resp = self._send(ctx, 'post', f"{self.api_url.rstrip('/')}/prompt", "queue", QueueFailed,
                          json={"prompt": graph.to_wire(), "client_id": client_id,
                                "prompt_id": prompt_id})
        expect_ok(resp, QueueFailed, "queue")
        try:
            body = resp.json()
        except ValueError:
            raise QueueFailed("queue response is not JSON",
                              status_code=resp.status_code, body=response_text(resp))

        if body.get('error') or body.get('node_errors'):
            raise QueueFailed(f"workflow rejected: {body.get('error') or body.get('node_errors')}",
                              status_code=resp.status_code, body=response_text(resp))
        queued_id = body.get('prompt_id')
        if not queued_id:
            raise QueueFailed("no prompt_id in response",
                              status_code=resp.status_code, body=response_text(resp))
        logger.info(f"[ComfyUI] Queued prompt {queued_id}")
        return queued_id

    def _poll_history(self, ctx: RunContext, prompt_id: str) -> Dict[str, Any]:
        url = f"{self.api_url.rstrip('/')}/history/{prompt_id}"
        deadline = time.monotonic() + self.timeout
        while True:
            resp = self._send(ctx, 'get', url, "history poll")
            expect_ok(resp, FetchFailed, "history poll")
            history = decode_json(resp, "history")
            entry = history.get(prompt_id) if isinstance(history, dict) else None

            if entry:
                status_info = entry.get('status') or {}
                if status_info.get('status_str') == 'error':
                    raise api_error(f"ComfyUI execution error: {self._error_detail(entry)}",
                                    status_code=resp.status_code, body=response_text(resp))
                if status_info.get('completed'):
                    return entry

            if time.monotonic() >= deadline:
                raise ApiError("no result or timeout")
            ctx.cancel.sleep(self.poll_interval)

    @staticmethod
    def _error_detail(entry: Dict[str, Any]) -> str:
        msgs = []
        for message in (entry.get('status') or {}).get('messages') or []:
            if isinstance(message, list) and len(message) == 2 and message[0] == 'execution_error':
                info = message[1] or {}
                msgs.append(f"Node {info.get('node_id')}: {info.get('exception_message', '').strip()}")
        for node_id, node_output in (entry.get('outputs') or {}).items():
            if isinstance(node_output, dict) and 'errors' in node_output:
                msgs.append(f"Node {node_id}: {node_output['errors']}")
        return '; '.join(msgs) if msgs else 'unknown error'

    @staticmethod
    def _select_output(entry: Dict[str, Any], output_node_id: Optional[str]) -> Tuple[Dict, MediaKind]:
        """First image (or video) reference, from the selected output node if any."""
        outputs = entry.get('outputs') or {}
        if output_node_id is not None:
            outputs = {output_node_id: outputs.get(str(output_node_id)) or {}}

        for node_id, output in outputs.items():
            if not isinstance(output, dict):
                continue
            images = output.get('images') or []
            if images and isinstance(images[0], dict):
                return images[0], MediaKind.IMAGE
            # VHS uses 'gifs' historically; some versions use 'videos' or 'video'
            videos = output.get('videos') or output.get('gifs') or output.get('video') or []
            if isinstance(videos, dict):
                videos = [videos]
            if videos and isinstance(videos[0], dict):
                return videos[0], MediaKind.VIDEO

        output_keys = {nid: list(out.keys()) for nid, out in outputs.items() if isinstance(out, dict)}
        logger.error(f"[ComfyUI] Prompt completed but no downloadable media found: {output_keys}")
        raise FetchFailed(f"no output image (node output keys: {output_keys})")

    def _download_output(self, ctx: RunContext, ref: Dict[str, Any]) -> bytes:
        filename = ref.get('filename')
        if not filename:
            raise FetchFailed(f"output entry has no filename: {ref}")
        params = {
            'filename': filename,
            'subfolder': ref.get('subfolder', ''),
            'type': ref.get('type', 'output'),
        }
        resp = self._send(ctx, 'get', f"{self.api_url.rstrip('/')}/view", "output download",
                          params=params)
        expect_ok(resp, FetchFailed, "output download")
        if not resp.content:
            raise FetchFailed(f"downloaded empty file for {filename}", status_code=resp.status_code)
        logger.info(f"[ComfyUI] Downloaded {filename} ({len(resp.content)} bytes)")
        return resp.content

    def interrupt(self):
        """Best-effort POST /interrupt for the job currently running."""
        if not self._running or not self.config.get('interrupt_on_cancel', True):
            return
        try:
            self.session.post(f"{self.api_url.rstrip('/')}/interrupt", timeout=5)
            logger.info("[ComfyUI] Interrupt sent")
        except requests.RequestException as e:
            logger.warning(f"[ComfyUI] Interrupt failed: {e}")


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

def create_backend(backend_type, config: Dict[str, Any], credentials=None, session=None,
                   uploader=None, ws_connect=None, image_processor=None) -> GenerationBackend:
    """Create the strategy for a backend selector using its config section."""
    backend_type = BackendType(backend_type)
    section = (config.get('backends') or {}).get(backend_type.value, {})

    if backend_type == BackendType.GEMINI:
        return GeminiBackend(section, credentials, session, image_processor)
    if backend_type == BackendType.GROK:
        return GrokBackend(section, credentials, session, image_processor)
    if backend_type == BackendType.AIMLAPI:
        return AIMLBackend(section, credentials, session, image_processor, uploader=uploader)
    return ComfyUIBackend(section, credentials, session, image_processor, ws_connect=ws_connect)


def list_available_backends(config: Dict[str, Any], credentials=None) -> Dict[str, tuple]:
    """Availability of each backend as {name: (available, message)}."""
    results = {}
    for bt in BackendType:
        try:
            backend = create_backend(bt, config, credentials)
            results[bt.value] = backend.check_availability()
        except GenerationError as e:
            results[bt.value] = (False, e.summary)
    return results


__all__ = [
    'RunContext', 'HttpPayload', 'ComfyPayload', 'GenerationBackend',
    'GeminiBackend', 'GrokBackend', 'AIMLBackend', 'ComfyUIBackend',
    'create_backend', 'list_available_backends',
]
