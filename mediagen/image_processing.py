#!/usr/bin/env python3
"""
image_processing.py - Upload Preparation for Reference Images
═══════════════════════════════════════════════════════════════════════════════

Every reference image passes through process_image_for_upload() before it is
encoded into a request or uploaded:
  - PNG: the original file bytes are passed through untouched when available
    (keeps embedded ComfyUI workflow chunks), else Pillow re-encodes
  - JPEG: re-encoded without EXIF (strips GPS/camera metadata)
  - optional downscale to a maximum edge length

ImgBBUploader turns bytes into a public URL for models that only accept
image URLs.

Part of MediaGen v0.1.0
"""
import io
import base64
import logging
from typing import Optional, Tuple

import requests

from .errors import UploadFailed, InvalidInput, expect_ok, decode_json
from .png_workflow import PNG_SIGNATURE

logger = logging.getLogger(__name__)

IMGBB_UPLOAD_URL = "https://api.imgbb.com/1/upload"

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
}


def process_image_for_upload(
    image,
    fmt: str = "jpeg",
    quality: float = 0.6,
    original_data: Optional[bytes] = None,
    max_dimension: Optional[int] = None,
) -> Tuple[bytes, str]:
    """
    Encode a reference image for transport.

    Args:
        image: PIL image (may be None when original_data is a PNG)
        fmt: "jpeg" or "png"
        quality: JPEG quality in 0..1
        original_data: bytes the image was loaded from
        max_dimension: downscale so the longest edge fits, if set

    Returns:
        (encoded_bytes, mime_type)
    """
    fmt = fmt.lower()
    if fmt not in MIME_TYPES:
        raise InvalidInput(f"unsupported upload format: {fmt}")
    mime = MIME_TYPES[fmt]

    if fmt == "png" and original_data and original_data.startswith(PNG_SIGNATURE) \
            and max_dimension is None:
        return original_data, mime

    if image is None:
        if not original_data:
            raise InvalidInput("reference image has no pixel data")
        from PIL import Image
        image = Image.open(io.BytesIO(original_data))
        image.load()

    if max_dimension and max(image.size) > max_dimension:
        image = image.copy()
        image.thumbnail((max_dimension, max_dimension))
        logger.debug(f"[Image] Downscaled reference to {image.size}")

    buf = io.BytesIO()
    if fmt in ("jpeg", "jpg"):
        # No exif= argument: Pillow writes no EXIF block
        rgb = image.convert("RGB") if image.mode not in ("RGB", "L") else image
        rgb.save(buf, format="JPEG", quality=max(1, min(95, int(quality * 100))))
    else:
        image.save(buf, format="PNG")
    return buf.getvalue(), mime


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{to_base64(data)}"


class ImgBBUploader:
    """Uploads bytes to ImgBB and returns the public URL."""

    def __init__(self, api_key: str, session=None, expiration: Optional[int] = None,
                 timeout: int = 60):
        if not api_key:
            raise InvalidInput("ImgBB API key is missing")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.expiration = expiration
        self.timeout = timeout

    def upload(self, data: bytes, name: Optional[str] = None) -> str:
        form = {"key": self.api_key, "image": to_base64(data)}
        if name:
            form["name"] = name
        if self.expiration:
            form["expiration"] = str(self.expiration)

        try:
            resp = self.session.post(IMGBB_UPLOAD_URL, data=form, timeout=self.timeout)
        except requests.RequestException as e:
            raise UploadFailed(f"ImgBB upload: {e}")
        expect_ok(resp, UploadFailed, "ImgBB upload")
        payload = decode_json(resp, "ImgBB upload")

        url = (payload.get("data") or {}).get("url") if isinstance(payload, dict) else None
        if not url:
            raise UploadFailed("ImgBB returned no image URL",
                               status_code=resp.status_code, body=resp.text)
        logger.info(f"[ImgBB] Uploaded reference image: {url}")
        return url


__all__ = ['process_image_for_upload', 'to_base64', 'to_data_uri', 'ImgBBUploader',
           'IMGBB_UPLOAD_URL']
