#!/usr/bin/env python3
"""
orchestrator.py - Generation Orchestrator
═══════════════════════════════════════════════════════════════════════════════

Public entry point:

    orch = GenerationOrchestrator(config, credentials=..., consent=..., history=...)
    for item in orch.submit(request):     # items arrive as they complete
        show(item)
    orch.cancel()                          # from any thread
    for item in orch.submit_prompt_file("prompts.txt", template, start=1, end=10):
        show(item)
    orch.current_progress()                # ProgressState

Pipeline per run:
  screen prompt → build payload → consent → one-time uploads →
  batch loop (transport + progress) → aggregate → commit history

Request building and graph resolution fail before any network call or
consent prompt. Cancellation ends the stream silently, writes no history
and raises nothing. Any other failure discards the run's history and
propagates as a GenerationError.

Part of MediaGen v0.1.0
"""
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, Any, Iterator

from .aggregator import ResultAggregator
from .backends import RunContext, create_backend
from .batch import BatchController
from .config import load_config
from .consent import ConsentGate
from .credentials import EnvCredentialStore
from .errors import GenerationError, GenerationCancelled, InvalidInput
from .image_processing import ImgBBUploader
from .models import GenerationRequest, GenerationResultItem, ProgressState
from .progress import ProgressCell, CancelToken
from .prompt_file import PromptFileRun, load_prompt_file
from .utils_sanitize import sanitize_prompt

logger = logging.getLogger(__name__)

IMGBB_SERVICE = "ImgBB"


class GenerationOrchestrator:
    """Runs generation requests against the configured backends."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        credentials=None,
        consent: Optional[ConsentGate] = None,
        history=None,
        writer=None,
        session=None,
        ws_connect=None,
        uploader=None,
        rng=None,
    ):
        self.config = config if config is not None else load_config()
        self.credentials = credentials or EnvCredentialStore(self.config.get('credentials'))
        self.consent = consent or ConsentGate()
        self.history = history
        self.writer = writer
        self.session = session
        self.ws_connect = ws_connect
        self.uploader = uploader
        self.rng = rng

        self._progress = ProgressCell()
        self._cancel: Optional[CancelToken] = None
        self._backend = None
        self._prompt_run: Optional[PromptFileRun] = None
        self._lock = threading.Lock()

    # ─── public API ────────────────────────────────────────────────────────

    def submit(self, request: GenerationRequest) -> Iterator[GenerationResultItem]:
        """Run one request, yielding each result item as soon as it completes."""
        ctx = RunContext(cancel=CancelToken(), progress=self._progress)
        self._progress.reset()
        with self._lock:
            self._cancel = ctx.cancel
            self._backend = None

        aggregator = None
        try:
            _, accepted, reason = sanitize_prompt(request.prompt, self.config.get('safety'))
            if not accepted:
                raise InvalidInput(f"prompt rejected ({reason})")

            backend = create_backend(
                request.backend, self.config, self.credentials, session=self.session,
                uploader=self._image_host(), ws_connect=self.ws_connect,
            )
            payload = backend.build(request)

            if not self.consent.confirm(backend.service_name):
                return
            if getattr(payload, 'pending_images', None) and not self.consent.confirm(IMGBB_SERVICE):
                return
            with self._lock:
                self._backend = backend
            ctx.cancel.check()

            aggregator = ResultAggregator(
                request, writer=self.writer, history=self.history,
                model=payload.model, workflow_name=getattr(payload, 'workflow_name', None),
            )
            logger.info(f"[Orchestrator] Generating with {backend.name}"
                        + (f" ({payload.model})" if payload.model else "")
                        + (f", batch of {request.batch_size}" if request.batch_size > 1 else ""))
            payload = backend.prepare(payload, ctx)
            controller = BatchController(backend, ctx, rng=self.rng)
            for index, total, artifact in controller.run(payload, request):
                yield aggregator.add(artifact, index, total)
            ctx.cancel.check()
            aggregator.commit()
        except GenerationCancelled:
            logger.info("[Orchestrator] Generation cancelled")
        except GenerationError as e:
            logger.error(f"[Orchestrator] {e.summary}")
            raise
        finally:
            if aggregator is not None and not aggregator.committed:
                aggregator.discard()
            with self._lock:
                self._cancel = None
                self._backend = None

    def submit_prompt_file(self, path, template: GenerationRequest, start: int = 1,
                           end: Optional[int] = None) -> PromptFileRun:
        """One request per line of a prompt file; see prompt_file.PromptFileRun."""
        run = PromptFileRun(self, load_prompt_file(path), template, start, end,
                            safety=self.config.get('safety'))
        with self._lock:
            self._prompt_run = run
        return run

    def cancel(self):
        """Stop the running request. Safe to call from any thread, or when idle."""
        with self._lock:
            token, backend = self._cancel, self._backend
            prompt_run = self._prompt_run
        if prompt_run is not None:
            prompt_run.cancel_token.cancel()
        if token is None:
            return
        token.cancel()
        if backend is not None:
            backend.interrupt()

    def current_progress(self) -> ProgressState:
        return self._progress.snapshot()

    # ─── helpers ───────────────────────────────────────────────────────────

    def _image_host(self):
        if self.uploader is not None:
            return self.uploader
        imgbb = (self.config.get('backends') or {}).get('imgbb') or {}
        if not imgbb.get('enabled', True):
            return None
        key = self.credentials.get('imgbb')
        if not key:
            return None
        return ImgBBUploader(key, expiration=imgbb.get('expiration'))


def load_request_images(paths) -> tuple:
    """ReferenceImages for a list of file paths."""
    from .models import ReferenceImage

    images = []
    for p in paths or []:
        p = Path(p)
        if not p.exists():
            raise InvalidInput(f"image not found: {p}")
        try:
            images.append(ReferenceImage.from_path(p))
        except OSError as e:
            raise InvalidInput(f"cannot read image {p.name} ({e})")
    return tuple(images)


__all__ = ['GenerationOrchestrator', 'load_request_images']
