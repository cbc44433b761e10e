#!/usr/bin/env python3
"""
MediaGen v0.1.0
═══════════════════════════════════════════════════════════════════════════════

Generation orchestration for image/video services behind one cancellable,
batchable pipeline.

Backends:
  - Gemini:     single synchronous call
  - ComfyUI:    queued workflow with websocket progress and history polling
  - Grok:       bearer-authenticated image call returning an array
  - AI/ML API:  synchronous image models, submit-then-poll video models

Also recovers ComfyUI workflows embedded in PNG files.
"""

__version__ = "0.1.0"

from .models import (
    BackendType, MediaKind, ReferenceImage, GenerationOptions, GenerationRequest,
    NodeInfo, GenerationResultItem, ProgressState, HistoryRecord,
)
from .errors import (
    GenerationError, InvalidInput, InvalidURL, InvalidConfiguration, NoWorkflow,
    InvalidPromptNode, InvalidImageNode, NoSamplerNode, UploadFailed, QueueFailed,
    FetchFailed, ApiError, ContentBlocked, DecodeFailed, GenerationCancelled,
)
from .workflow_graph import WorkflowGraph, WorkflowNode, load_workflow_file
from .png_workflow import extract, extract_workflow_json, scan_workflow_nodes
from .backends import (
    GeminiBackend, ComfyUIBackend, GrokBackend, AIMLBackend,
    create_backend, list_available_backends,
)
from .orchestrator import GenerationOrchestrator, load_request_images
from .prompt_file import PromptFileRun, PromptFailure, load_prompt_file
from .config import load_config
from .consent import ConsentGate, MemorySettingsStore, YamlSettingsStore
from .credentials import EnvCredentialStore, StaticCredentialStore
from .storage import FileOutputWriter, JsonHistoryStore

__all__ = [
    # Data model
    'BackendType', 'MediaKind', 'ReferenceImage', 'GenerationOptions',
    'GenerationRequest', 'NodeInfo', 'GenerationResultItem', 'ProgressState',
    'HistoryRecord',
    # Errors
    'GenerationError', 'InvalidInput', 'InvalidURL', 'InvalidConfiguration',
    'NoWorkflow', 'InvalidPromptNode', 'InvalidImageNode', 'NoSamplerNode',
    'UploadFailed', 'QueueFailed', 'FetchFailed', 'ApiError', 'ContentBlocked',
    'DecodeFailed', 'GenerationCancelled',
    # Workflows
    'WorkflowGraph', 'WorkflowNode', 'load_workflow_file',
    'extract', 'extract_workflow_json', 'scan_workflow_nodes',
    # Backends + orchestration
    'GeminiBackend', 'ComfyUIBackend', 'GrokBackend', 'AIMLBackend',
    'create_backend', 'list_available_backends',
    'GenerationOrchestrator', 'load_request_images',
    'PromptFileRun', 'PromptFailure', 'load_prompt_file',
    # Collaborators
    'load_config', 'ConsentGate', 'MemorySettingsStore', 'YamlSettingsStore',
    'EnvCredentialStore', 'StaticCredentialStore', 'FileOutputWriter', 'JsonHistoryStore',
]
