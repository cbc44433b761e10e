#!/usr/bin/env python3
"""
credentials.py - API Key Lookup
═══════════════════════════════════════════════════════════════════════════════

Backends ask for keys by name ("gemini", "grok", "aimlapi", "imgbb"). Where
the keys live is up to the store; the default reads environment variables
named in the `credentials` config section.

Part of MediaGen v0.1.0
"""
import os
import logging
from typing import Optional, Dict

logger = logging.getLogger(__name__)

DEFAULT_ENV_VARS = {
    "gemini": "GEMINI_API_KEY",
    "grok": "XAI_API_KEY",
    "aimlapi": "AIML_API_KEY",
    "imgbb": "IMGBB_API_KEY",
}


class EnvCredentialStore:
    """Reads API keys from environment variables."""

    def __init__(self, env_vars: Optional[Dict[str, str]] = None):
        self.env_vars = dict(DEFAULT_ENV_VARS)
        self.env_vars.update(env_vars or {})

    def get(self, name: str) -> Optional[str]:
        var = self.env_vars.get(name)
        if not var:
            return None
        value = os.getenv(var, "").strip()
        return value or None


class StaticCredentialStore:
    """Keys held in memory (explicit CLI flags, tests)."""

    def __init__(self, keys: Optional[Dict[str, str]] = None, fallback=None):
        self.keys = {k: v for k, v in (keys or {}).items() if v}
        self.fallback = fallback

    def get(self, name: str) -> Optional[str]:
        if name in self.keys:
            return self.keys[name]
        return self.fallback.get(name) if self.fallback else None


__all__ = ['EnvCredentialStore', 'StaticCredentialStore', 'DEFAULT_ENV_VARS']
