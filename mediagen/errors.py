#!/usr/bin/env python3
"""
errors.py - Generation Error Taxonomy + Classifier
═══════════════════════════════════════════════════════════════════════════════

Closed set of failures a generation run can end with:
  - InvalidInput / InvalidURL / InvalidConfiguration (caller mistakes)
  - NoWorkflow / InvalidPromptNode / InvalidImageNode / NoSamplerNode (bad graph)
  - UploadFailed / QueueFailed / FetchFailed (transport, per pipeline stage)
  - ApiError / ContentBlocked (provider-reported logical failure)
  - DecodeFailed (body did not match the expected schema)

Every error carries a short `summary` for the user and a `detail` payload
(status code + raw body) for a diagnostic view.

Cancellation is NOT an error: GenerationCancelled unwinds a run silently.

Part of MediaGen v0.1.0
"""
import json
import logging
from typing import Optional, Any, Dict

logger = logging.getLogger(__name__)

# Lexical markers of a provider-side safety/moderation refusal
SAFETY_KEYWORDS = [
    "safety", "violation", "policy", "blocked", "moderation",
    "nsfw", "inappropriate", "prohibited",
]

# Raw bodies are clipped to this many characters in detail payloads
MAX_BODY_CHARS = 4000


class GenerationError(Exception):
    """Base class for every terminal generation failure."""

    label = "Generation failed"

    def __init__(self, message: str = "", status_code: Optional[int] = None,
                 body: Optional[str] = None):
        self.message = message or self.label
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)

    @property
    def summary(self) -> str:
        """One short line for the user."""
        if self.message == self.label:
            return self.label
        return f"{self.label}: {self.message}"

    @property
    def detail(self) -> str:
        """Expandable diagnostic payload."""
        lines = [self.summary]
        if self.status_code is not None:
            lines.append(f"HTTP status: {self.status_code}")
        if self.body:
            lines.append(f"Response body:\n{self.body[:MAX_BODY_CHARS]}")
        return "\n".join(lines)


class InvalidInput(GenerationError):
    label = "Invalid input"


class InvalidURL(GenerationError):
    label = "Invalid server URL"


class InvalidConfiguration(GenerationError):
    label = "Invalid configuration"


class NoWorkflow(GenerationError):
    label = "No workflow loaded"


class InvalidPromptNode(GenerationError):
    label = "Invalid prompt node"


class InvalidImageNode(GenerationError):
    label = "Invalid image node"


class NoSamplerNode(GenerationError):
    label = "No sampler node"


class UploadFailed(GenerationError):
    label = "Upload failed"


class QueueFailed(GenerationError):
    label = "Queue failed"


class FetchFailed(GenerationError):
    label = "Fetch failed"


class ApiError(GenerationError):
    label = "API error"


class ContentBlocked(ApiError):
    """Provider refused the request on safety / content-policy grounds."""

    label = "[Content policy] Request blocked"


class DecodeFailed(GenerationError):
    label = "Could not decode response"


class GenerationCancelled(Exception):
    """Raised internally when the cancel token fires. Never surfaced to users."""
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFIER
# ═══════════════════════════════════════════════════════════════════════════════

def is_safety_message(message: Optional[str]) -> bool:
    """True when a provider message reads like a content-policy refusal."""
    if not message:
        return False
    lower = message.lower()
    return any(word in lower for word in SAFETY_KEYWORDS)


def response_text(resp) -> str:
    """Raw body of a response, never raising."""
    try:
        return resp.text or ""
    except Exception:
        return ""


def provider_error_message(payload: Any) -> Optional[str]:
    """
    Pull a provider-supplied error message out of a decoded JSON body.

    Recognises the shapes used by the supported providers:
      {"error": "text"}
      {"error": {"message": "text", ...}}
      {"errors": [{"message": "text"}, ...]}
      {"detail": "text"} / {"detail": [{"msg": "text"}]}
      {"status": "failed", "error": ...}
    """
    if not isinstance(payload, dict):
        return None

    error = payload.get('error')
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict):
        msg = error.get('message') or error.get('msg') or error.get('status')
        return str(msg) if msg else json.dumps(error)

    errors = payload.get('errors')
    if isinstance(errors, list) and errors:
        parts = []
        for e in errors:
            if isinstance(e, dict):
                parts.append(str(e.get('message') or e.get('msg') or e))
            else:
                parts.append(str(e))
        return "; ".join(parts)

    detail = payload.get('detail')
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, list) and detail:
        return "; ".join(
            str(d.get('msg', d)) if isinstance(d, dict) else str(d) for d in detail
        )

    return None


def api_error(message: str, status_code: Optional[int] = None,
              body: Optional[str] = None) -> ApiError:
    """Build an ApiError, promoting it to ContentBlocked on safety wording."""
    if is_safety_message(message):
        return ContentBlocked(message, status_code=status_code, body=body)
    return ApiError(message, status_code=status_code, body=body)


def expect_ok(resp, error_cls=ApiError, stage: str = "request"):
    """
    Raise when a response status is outside 2xx.

    For ApiError the provider message (if any) is used and safety wording
    promotes the failure to ContentBlocked. Stage-specific transport errors
    (UploadFailed, QueueFailed, FetchFailed) keep their own class.
    """
    status = resp.status_code
    if 200 <= status < 300:
        return resp

    body = response_text(resp)
    logger.error(f"[HTTP] {stage} failed: HTTP {status} - {body[:200]}")

    if error_cls is ApiError:
        message = None
        try:
            message = provider_error_message(json.loads(body))
        except ValueError:
            pass
        raise api_error(message or f"HTTP {status}", status_code=status, body=body)

    raise error_cls(f"{stage}: HTTP {status}", status_code=status, body=body)


def decode_json(resp, stage: str = "response") -> Any:
    """Decode a JSON body, mapping parse failures to DecodeFailed."""
    try:
        return resp.json()
    except ValueError as e:
        body = response_text(resp)
        raise DecodeFailed(f"{stage} is not valid JSON ({e})",
                           status_code=resp.status_code, body=body)


def raise_for_provider_error(payload: Any, resp=None) -> None:
    """Treat an error object inside a 2xx body as a logical failure."""
    message = provider_error_message(payload)
    if not message:
        return
    status = getattr(resp, 'status_code', None)
    body = response_text(resp) if resp is not None else json.dumps(payload)
    raise api_error(message, status_code=status, body=body)


def check_json_response(resp, stage: str = "request") -> Dict[str, Any]:
    """expect_ok + decode_json + raise_for_provider_error in one step."""
    expect_ok(resp, ApiError, stage)
    payload = decode_json(resp, stage)
    raise_for_provider_error(payload, resp)
    if not isinstance(payload, dict):
        raise DecodeFailed(f"{stage}: expected a JSON object",
                           status_code=resp.status_code, body=response_text(resp))
    return payload


__all__ = [
    'GenerationError', 'InvalidInput', 'InvalidURL', 'InvalidConfiguration',
    'NoWorkflow', 'InvalidPromptNode', 'InvalidImageNode', 'NoSamplerNode',
    'UploadFailed', 'QueueFailed', 'FetchFailed', 'ApiError', 'ContentBlocked',
    'DecodeFailed', 'GenerationCancelled', 'SAFETY_KEYWORDS',
    'is_safety_message', 'provider_error_message', 'api_error', 'expect_ok',
    'decode_json', 'raise_for_provider_error', 'check_json_response',
]
