#!/usr/bin/env python3
"""
png_workflow.py - Embedded Workflow Extractor
═══════════════════════════════════════════════════════════════════════════════

ComfyUI writes the job graph that produced an image into the PNG itself, as
tEXt chunks keyed "workflow" (editor format) and "prompt" (API format).
This module walks the raw chunk structure to recover that JSON, then lists
the text-encoder nodes so their prompt text can pre-fill the prompt field.

Chunk layout after the 8-byte signature:
    [length:4 BE][type:4][payload:length][crc:4]

Any malformed or truncated input yields an empty result. Nothing here raises.

Part of MediaGen v0.1.0
"""
import io
import json
import struct
import logging
from dataclasses import dataclass, field
from typing import Optional, Any, List

from .models import NodeInfo

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
WORKFLOW_KEYWORDS = ("workflow", "prompt", "Workflow", "Prompt")
TEXT_ENCODE_MARKER = "CLIPTextEncode"
OUTPUT_NODE_TYPES = ("SaveImage", "PreviewImage")
IMAGE_NODE_TYPES = ("LoadImage",)
LABEL_TEXT_CHARS = 50


@dataclass
class WorkflowNodes:
    """Node lists offered to the user after loading a workflow."""
    prompt_nodes: List[NodeInfo] = field(default_factory=list)
    output_nodes: List[NodeInfo] = field(default_factory=list)
    image_nodes: List[NodeInfo] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.prompt_nodes or self.output_nodes or self.image_nodes)


# ═══════════════════════════════════════════════════════════════════════════════
# CHUNK WALK
# ═══════════════════════════════════════════════════════════════════════════════

def _scan_text_chunks(data: bytes) -> Optional[str]:
    """Return the first workflow-keyed tEXt value, or None."""
    total = len(data)
    offset = len(PNG_SIGNATURE)

    while offset + 12 <= total:
        (length,) = struct.unpack('>I', data[offset:offset + 4])
        chunk_type = data[offset + 4:offset + 8]
        chunk_end = offset + 12 + length
        if chunk_end > total:
            logger.debug(f"[Extractor] Truncated chunk at offset {offset}")
            break

        if chunk_type == b'tEXt':
            payload = data[offset + 8:offset + 8 + length]
            keyword, sep, value = payload.partition(b'\x00')
            if sep:
                key = keyword.decode('latin-1').strip()
                if key in WORKFLOW_KEYWORDS:
                    text = value.decode('utf-8', errors='replace').strip()
                    if text:
                        return text
        elif chunk_type == b'IEND':
            break

        offset = chunk_end

    return None


def _pillow_text(data: bytes) -> Optional[str]:
    """Second chance: Pillow's parsed text metadata (also covers zTXt/iTXt)."""
    try:
        from PIL import Image
        with Image.open(io.BytesIO(data)) as img:
            info = dict(img.info)
    except Exception as e:
        logger.debug(f"[Extractor] Pillow could not read metadata: {e}")
        return None

    for key in WORKFLOW_KEYWORDS:
        value = info.get(key)
        if isinstance(value, bytes):
            value = value.decode('utf-8', errors='replace')
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_workflow_json(data: bytes) -> Optional[str]:
    """Recover the embedded workflow JSON string from PNG bytes."""
    if not isinstance(data, (bytes, bytearray)) or not data.startswith(PNG_SIGNATURE):
        return None
    try:
        text = _scan_text_chunks(bytes(data))
    except struct.error:
        text = None
    if text is None:
        text = _pillow_text(bytes(data))
    return text


# ═══════════════════════════════════════════════════════════════════════════════
# NODE LISTING
# ═══════════════════════════════════════════════════════════════════════════════

def _label(node_id: str, text: str) -> str:
    if not text:
        return f"Node {node_id}"
    suffix = "..." if len(text) > LABEL_TEXT_CHARS else ""
    return f"Node {node_id}: {text[:LABEL_TEXT_CHARS]}{suffix}"


def _flatten(workflow: Any) -> List[tuple]:
    """(id, class_type, prompt_text) for either wire shape."""
    rows = []
    if isinstance(workflow, dict) and isinstance(workflow.get('nodes'), list):
        for node in workflow['nodes']:
            if not isinstance(node, dict) or node.get('id') is None:
                continue
            widgets = node.get('widgets_values')
            text = ""
            if isinstance(widgets, list):
                text = next((w for w in widgets if isinstance(w, str)), "")
            rows.append((str(node['id']), str(node.get('type', '')), text))
    elif isinstance(workflow, dict):
        for node_id, node in workflow.items():
            if not isinstance(node, dict):
                continue
            inputs = node.get('inputs')
            text = inputs.get('text', "") if isinstance(inputs, dict) else ""
            rows.append((str(node_id), str(node.get('class_type', '')),
                         text if isinstance(text, str) else ""))
    return rows


def scan_workflow_nodes(workflow: Any) -> WorkflowNodes:
    """Sort the nodes of a decoded workflow into prompt / output / image lists."""
    found = WorkflowNodes()
    for node_id, class_type, text in sorted(_flatten(workflow)):
        if TEXT_ENCODE_MARKER in class_type:
            found.prompt_nodes.append(NodeInfo(node_id, _label(node_id, text), text))
        elif class_type in OUTPUT_NODE_TYPES:
            found.output_nodes.append(NodeInfo(node_id, f"Node {node_id}: {class_type}", ""))
        elif class_type in IMAGE_NODE_TYPES:
            found.image_nodes.append(NodeInfo(node_id, f"Node {node_id}: {class_type}", ""))
    return found


def extract(data: bytes) -> List[NodeInfo]:
    """
    Prompt nodes embedded in a PNG, sorted by node id.

    Returns [] for non-PNG, truncated or malformed input, or when no
    workflow chunk exists.
    """
    try:
        text = extract_workflow_json(data)
        if text is None:
            return []
        workflow = json.loads(text)
        nodes = scan_workflow_nodes(workflow).prompt_nodes
    except Exception as e:
        logger.debug(f"[Extractor] Ignoring unreadable workflow: {e}")
        return []
    logger.info(f"[Extractor] Found {len(nodes)} prompt node(s)")
    return nodes


__all__ = ['extract', 'extract_workflow_json', 'scan_workflow_nodes',
           'WorkflowNodes', 'PNG_SIGNATURE', 'WORKFLOW_KEYWORDS']
