#!/usr/bin/env python3
"""
workflow_graph.py - Typed ComfyUI Workflow Graph
═══════════════════════════════════════════════════════════════════════════════

Strongly-typed view over a ComfyUI job graph (node-id → node).

Two wire shapes are accepted:
  - API / runtime format: {"3": {"class_type": "KSampler", "inputs": {...}}}
  - Editor format:        {"nodes": [...], "links": [...]} (converted on load)

The loosely-typed JSON only exists at the boundary (from_wire / to_wire).
All mutating helpers return a NEW graph; the graph handed in by the caller
is never touched, so seeds and prompts cannot leak between batch iterations.

Structural heuristics:
  - sampler node:   class_type contains "Sampler" (holds the seed)
  - prompt sink:    explicit id, else the node wired into a sampler's
                    'positive' input, else the first node (sorted id order)
                    with a string input whose key contains prompt/text/positive
  - image sinks:    explicit ids, else the first LoadImage node

Part of MediaGen v0.1.0
"""
import copy
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Iterable

from .errors import (
    InvalidInput, NoWorkflow, InvalidPromptNode, InvalidImageNode, NoSamplerNode,
)

logger = logging.getLogger(__name__)

SAMPLER_MARKER = "Sampler"
IMAGE_LOADER_MARKER = "LoadImage"
PROMPT_KEY_MARKERS = ("prompt", "text", "positive")
SEED_KEYS = ("seed", "noise_seed")


@dataclass
class WorkflowNode:
    """One processing node of a workflow graph."""
    class_type: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    def string_inputs(self) -> Dict[str, str]:
        return {k: v for k, v in self.inputs.items() if isinstance(v, str)}

    def prompt_keys(self) -> List[str]:
        """Keys of string-valued inputs that look like prompt text."""
        keys = []
        for key, value in self.inputs.items():
            if not isinstance(value, str):
                continue
            lower = key.lower()
            if any(marker in lower for marker in PROMPT_KEY_MARKERS):
                keys.append(key)
        return keys

    def is_sampler(self) -> bool:
        return SAMPLER_MARKER in self.class_type

    def seed_key(self) -> Optional[str]:
        for key in SEED_KEYS:
            if key in self.inputs:
                return key
        return None

    def to_wire(self) -> Dict[str, Any]:
        wire = {"class_type": self.class_type, "inputs": copy.deepcopy(self.inputs)}
        if self.meta:
            wire["_meta"] = copy.deepcopy(self.meta)
        return wire


class WorkflowGraph:
    """Mapping of node id (string) → WorkflowNode."""

    def __init__(self, nodes: Optional[Dict[str, WorkflowNode]] = None):
        self._nodes: Dict[str, WorkflowNode] = dict(nodes or {})

    # ─── construction ──────────────────────────────────────────────────────

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'WorkflowGraph':
        """Build from the runtime (API) format. Non-node entries are skipped."""
        if not isinstance(data, dict):
            raise NoWorkflow("workflow must be a JSON object")
        nodes = {}
        for node_id, node in data.items():
            if not isinstance(node, dict) or 'class_type' not in node:
                continue
            inputs = node.get('inputs') or {}
            if not isinstance(inputs, dict):
                inputs = {}
            nodes[str(node_id)] = WorkflowNode(
                class_type=str(node['class_type']),
                inputs=copy.deepcopy(inputs),
                meta=copy.deepcopy(node.get('_meta') or {}),
            )
        return cls(nodes)

    @classmethod
    def from_editor_format(cls, data: Dict[str, Any]) -> 'WorkflowGraph':
        """
        Convert the editor format (nodes + links) to the runtime format.

        Links are [link_id, from_id, from_slot, to_id, to_slot, type]. A linked
        input becomes [str(from_id), from_slot]; an unlinked input takes the
        next entry of the node's widgets_values, in order.
        """
        link_map: Dict[int, tuple] = {}
        for link in data.get('links') or []:
            if not isinstance(link, list) or len(link) != 6:
                continue
            link_id, from_id, from_slot = link[0], link[1], link[2]
            if not all(isinstance(v, int) for v in (link_id, from_id, from_slot)):
                continue
            link_map[link_id] = (from_id, from_slot)

        nodes = {}
        for node in data.get('nodes') or []:
            if not isinstance(node, dict):
                continue
            node_id = node.get('id')
            node_type = node.get('type')
            if node_id is None or not isinstance(node_type, str):
                continue

            widgets = node.get('widgets_values') or []
            if not isinstance(widgets, list):
                widgets = []
            widget_idx = 0
            inputs: Dict[str, Any] = {}

            for node_input in node.get('inputs') or []:
                name = node_input.get('name') if isinstance(node_input, dict) else None
                if not name:
                    continue
                link = link_map.get(node_input.get('link'))
                if link is not None:
                    inputs[name] = [str(link[0]), link[1]]
                elif widget_idx < len(widgets):
                    inputs[name] = widgets[widget_idx]
                    widget_idx += 1

            # Text encoders keep their prompt as a bare widget, not a named input
            if "TextEncode" in node_type and 'text' not in inputs:
                text = next((w for w in widgets if isinstance(w, str)), None)
                if text is not None:
                    inputs['text'] = text

            meta = {'title': node['title']} if node.get('title') else {}
            nodes[str(node_id)] = WorkflowNode(node_type, inputs, meta)

        logger.debug(f"[Workflow] Converted editor workflow with {len(nodes)} nodes")
        return cls(nodes)

    @classmethod
    def from_json(cls, data: Any) -> 'WorkflowGraph':
        """Dispatch between the runtime and editor shapes."""
        if isinstance(data, dict) and isinstance(data.get('nodes'), list):
            return cls.from_editor_format(data)
        return cls.from_wire(data)

    @classmethod
    def from_json_text(cls, text: str) -> 'WorkflowGraph':
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidInput(f"workflow is not valid JSON ({e})")
        return cls.from_json(data)

    def to_wire(self) -> Dict[str, Any]:
        """Plain-JSON runtime form, safe to serialise and to mutate."""
        return {node_id: node.to_wire() for node_id, node in self._nodes.items()}

    def clone(self) -> 'WorkflowGraph':
        return WorkflowGraph(copy.deepcopy(self._nodes))

    # ─── container protocol ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id) -> bool:
        return str(node_id) in self._nodes

    def __getitem__(self, node_id) -> WorkflowNode:
        return self._nodes[str(node_id)]

    def __eq__(self, other) -> bool:
        if not isinstance(other, WorkflowGraph):
            return NotImplemented
        return self.to_wire() == other.to_wire()

    def __repr__(self) -> str:
        return f"WorkflowGraph({len(self._nodes)} nodes)"

    def node_ids(self) -> List[str]:
        """Node ids in deterministic (lexicographic) order."""
        return sorted(self._nodes)

    def nodes_of_type(self, marker: str) -> List[str]:
        return [nid for nid in self.node_ids() if marker in self._nodes[nid].class_type]

    # ─── sampler ───────────────────────────────────────────────────────────

    def sampler_node_id(self) -> Optional[str]:
        """First sampler node, preferring one that already holds a seed."""
        samplers = [nid for nid in self.node_ids() if self._nodes[nid].is_sampler()]
        if not samplers:
            return None
        for nid in samplers:
            if self._nodes[nid].seed_key():
                return nid
        return samplers[0]

    def require_sampler(self) -> str:
        node_id = self.sampler_node_id()
        if node_id is None:
            raise NoSamplerNode(
                f"no node class_type contains '{SAMPLER_MARKER}'"
            )
        return node_id

    def sampler_seed(self) -> Optional[int]:
        node_id = self.sampler_node_id()
        if node_id is None:
            return None
        node = self._nodes[node_id]
        key = node.seed_key()
        return node.inputs.get(key) if key else None

    def reseeded(self, seed: int) -> 'WorkflowGraph':
        """Clone with the sampler's seed replaced."""
        graph = self.clone()
        node = graph._nodes[graph.require_sampler()]
        node.inputs[node.seed_key() or 'seed'] = seed
        return graph

    # ─── prompt sink ───────────────────────────────────────────────────────

    def _positive_wired_ids(self) -> List[str]:
        ids = []
        for nid in self.node_ids():
            node = self._nodes[nid]
            if not node.is_sampler():
                continue
            ref = node.inputs.get('positive')
            if isinstance(ref, list) and ref:
                target = str(ref[0])
                if target in self._nodes and target not in ids:
                    ids.append(target)
        return ids

    def prompt_sink_id(self, preferred: Optional[str] = None) -> str:
        """Resolve the node that receives the prompt text."""
        if preferred is not None:
            preferred = str(preferred)
            if preferred not in self._nodes:
                raise InvalidPromptNode(f"node {preferred} not found in workflow")
            if not self._nodes[preferred].prompt_keys():
                raise InvalidPromptNode(f"node {preferred} has no text input")
            return preferred

        for nid in self._positive_wired_ids():
            if self._nodes[nid].prompt_keys():
                return nid

        for nid in self.node_ids():
            if self._nodes[nid].prompt_keys():
                return nid

        raise InvalidPromptNode("no node has a prompt/text/positive string input")

    def prompt_text(self, node_id: Optional[str] = None) -> str:
        """Current prompt text held by the sink node."""
        nid = self.prompt_sink_id(node_id)
        node = self._nodes[nid]
        return node.inputs[node.prompt_keys()[0]]

    def with_prompt(self, text: str, node_id: Optional[str] = None) -> 'WorkflowGraph':
        """Clone with the prompt written into every prompt-like input of the sink."""
        graph = self.clone()
        nid = graph.prompt_sink_id(node_id)
        node = graph._nodes[nid]
        for key in node.prompt_keys():
            node.inputs[key] = text
        logger.debug(f"[Workflow] Injected prompt into node {nid} ({node.class_type})")
        return graph

    # ─── image sinks ───────────────────────────────────────────────────────

    def image_sink_ids(self, selected: Iterable[str] = (), needed: int = 1) -> List[str]:
        """
        Resolve the nodes that receive uploaded image names.

        Explicit ids must exist and accept an 'image' input. Without a
        selection the first LoadImage node is used.
        """
        ids = [str(s) for s in selected]
        if not ids:
            loaders = self.nodes_of_type(IMAGE_LOADER_MARKER)
            if not loaders:
                raise InvalidImageNode("workflow has no LoadImage node")
            ids = loaders[:max(needed, 1)]

        for nid in ids:
            node = self._nodes.get(nid)
            if node is None:
                raise InvalidImageNode(f"node {nid} not found in workflow")
            if 'image' not in node.inputs and IMAGE_LOADER_MARKER not in node.class_type:
                raise InvalidImageNode(f"node {nid} ({node.class_type}) takes no image")
        return ids

    def with_images(self, assignments: Dict[str, str]) -> 'WorkflowGraph':
        """Clone with inputs['image'] set per node id."""
        graph = self.clone()
        for nid, image_name in assignments.items():
            graph._nodes[str(nid)].inputs['image'] = image_name
        return graph


def load_workflow_file(path: Path) -> WorkflowGraph:
    """Load a workflow from a .json file or a PNG carrying one."""
    from .png_workflow import extract_workflow_json

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == '.json':
        graph = WorkflowGraph.from_json_text(path.read_text(encoding='utf-8'))
    elif suffix == '.png':
        text = extract_workflow_json(path.read_bytes())
        if text is None:
            raise NoWorkflow(f"{path.name} has no embedded workflow")
        graph = WorkflowGraph.from_json_text(text)
    else:
        raise InvalidInput(f"unsupported workflow file type: {path.suffix}")

    if not len(graph):
        raise NoWorkflow(f"{path.name} contains no workflow nodes")
    logger.info(f"[Workflow] Loaded {path.name} ({len(graph)} nodes)")
    return graph


__all__ = ['WorkflowNode', 'WorkflowGraph', 'load_workflow_file',
           'SAMPLER_MARKER', 'IMAGE_LOADER_MARKER']
