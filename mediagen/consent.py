#!/usr/bin/env python3
"""
consent.py - Privacy Consent Gate
═══════════════════════════════════════════════════════════════════════════════

Before a prompt or image first leaves the machine for a third-party service,
the user is shown that service's privacy notice once per session. A
"don't ask again" answer is persisted in the settings store and skips the
notice in later sessions.

Settings keys:
    consent.<service>.shown      notice was displayed at least once
    consent.<service>.dont_ask   skip the notice from now on

Settings live behind a tiny get/set store so the gate can run against a
YAML file, or an in-memory dict in tests.

Part of MediaGen v0.1.0
"""
import re
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Callable, Tuple

import yaml

logger = logging.getLogger(__name__)

PRIVACY_SERVICES = {
    "Gemini": (
        "https://policies.google.com/privacy",
        "Prompts and images are sent to Google's Gemini API for processing.",
    ),
    "Grok": (
        "https://x.ai/privacy-policy",
        "Prompts are sent to xAI's Grok API for processing.",
    ),
    "AI/ML API": (
        "https://aimlapi.com/privacy-policy",
        "Prompts and images are sent to AI/ML API and the provider behind the selected model.",
    ),
    "ImgBB": (
        "https://imgbb.com/privacy",
        "Input images are uploaded to ImgBB to obtain a public URL the model can read.",
    ),
}


def _service_key(service: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', service.lower()).strip('_')


class MemorySettingsStore:
    """Settings kept in a dict."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self.values = dict(values or {})

    def get(self, key: str, default=None):
        return self.values.get(key, default)

    def set(self, key: str, value):
        self.values[key] = value


class YamlSettingsStore(MemorySettingsStore):
    """Settings persisted to a flat YAML mapping, written on every change."""

    def __init__(self, path: Path):
        self.path = Path(path)
        values = {}
        if self.path.exists():
            with open(self.path) as f:
                values = yaml.safe_load(f) or {}
            if not isinstance(values, dict):
                logger.warning(f"[Settings] Ignoring malformed {self.path}")
                values = {}
        super().__init__(values)

    def set(self, key: str, value):
        super().set(key, value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            yaml.safe_dump(self.values, f, default_flow_style=False, sort_keys=True)


# (service, policy_url, message) → (accepted, dont_ask_again)
ConsentPrompt = Callable[[str, str, str], Tuple[bool, bool]]


class ConsentGate:
    """Asks once per service per session, unless the user opted out of asking."""

    def __init__(self, settings=None, prompt: Optional[ConsentPrompt] = None,
                 default: bool = True):
        self.settings = settings if settings is not None else MemorySettingsStore()
        self.prompt = prompt
        self.default = default
        self._confirmed = set()

    def confirm(self, service: Optional[str]) -> bool:
        if service is None or service in self._confirmed:
            return True

        key = _service_key(service)
        if self.settings.get(f"consent.{key}.dont_ask", False):
            self._confirmed.add(service)
            return True

        policy_url, message = PRIVACY_SERVICES.get(service, ("", f"Data is sent to {service}."))
        if self.prompt is not None:
            accepted, dont_ask = self.prompt(service, policy_url, message)
        else:
            logger.info(f"[Consent] {message} Privacy policy: {policy_url}")
            accepted, dont_ask = self.default, False

        self.settings.set(f"consent.{key}.shown", True)
        if accepted:
            self._confirmed.add(service)
            if dont_ask:
                self.settings.set(f"consent.{key}.dont_ask", True)
        else:
            logger.info(f"[Consent] Declined sending data to {service}")
        return accepted


__all__ = ['ConsentGate', 'MemorySettingsStore', 'YamlSettingsStore', 'PRIVACY_SERVICES']
