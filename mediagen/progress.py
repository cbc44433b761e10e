#!/usr/bin/env python3
"""
progress.py - ComfyUI Progress Channel + Cancellation
═══════════════════════════════════════════════════════════════════════════════

  - ProgressCell:    fraction/completion cell, one writer at a time
  - CancelToken:     cooperative cancel flag with interruptible sleep
  - ProgressChannel: websocket listener on a daemon thread

The channel is advisory. It reports sampler progress and notices when the
server says the job finished, but completion of a run is decided by the
history poll loop alone.

Cell ownership: the run resets the cell before each job is queued, the
listener is the only writer while the job executes, and the run marks it
completed only after the listener thread has been joined. Reads are
lock-free snapshots.

Teardown race: closing the socket while the listener is blocked in recv()
raises a connection-closed/reset error on the listener thread. That error is
expected when the run was cancelled, completed or is being closed, and is
suppressed in those cases.

Part of MediaGen v0.1.0
"""
import json
import logging
import threading
from typing import Optional, Callable

import websocket

from .errors import GenerationCancelled
from .models import ProgressState

logger = logging.getLogger(__name__)

WS_RECV_TIMEOUT = 1.0
WS_CONNECT_TIMEOUT = 10.0


class ProgressCell:
    """
    Progress read by the orchestrator.

    Written by the listener while a job executes; reset before the job and
    marked completed after it by the run itself, never concurrently with
    the listener.
    """

    def __init__(self):
        self._fraction = 0.0
        self._completed = False

    def update(self, fraction: float):
        self._fraction = max(0.0, min(1.0, float(fraction)))

    def mark_completed(self):
        self._fraction = 1.0
        self._completed = True

    def reset(self):
        self._fraction = 0.0
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def snapshot(self) -> ProgressState:
        return ProgressState(fraction=self._fraction, completed=self._completed)


class CancelToken:
    """Cooperative cancellation checked before every network call and sleep."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self):
        if self._event.is_set():
            raise GenerationCancelled()

    def sleep(self, seconds: float):
        """Wait for `seconds`, waking immediately on cancel."""
        self.check()
        if self._event.wait(seconds):
            raise GenerationCancelled()


def websocket_url(server_url: str, client_id: str) -> str:
    ws_url = server_url.rstrip('/').replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_url}/ws?clientId={client_id}"


class ProgressChannel:
    """
    Listens on ComfyUI's /ws endpoint for one job.

    Message types handled:
      progress           {"value": n, "max": m}  → fraction n/m
      executing          {"node": None}          → job finished
      execution_success                          → job finished
      execution_error                            → logged, left to the poll loop
    """

    def __init__(
        self,
        server_url: str,
        client_id: str,
        cell: ProgressCell,
        cancel_token: Optional[CancelToken] = None,
        prompt_id: Optional[str] = None,
        connect: Optional[Callable] = None,
        recv_timeout: float = WS_RECV_TIMEOUT,
    ):
        self.url = websocket_url(server_url, client_id)
        self.cell = cell
        self.cancel_token = cancel_token or CancelToken()
        self.prompt_id = prompt_id
        self._connect = connect or websocket.create_connection
        self.recv_timeout = recv_timeout
        self._ws = None
        self._thread: Optional[threading.Thread] = None
        self._closing = threading.Event()
        self.error: Optional[BaseException] = None

    def open(self) -> bool:
        """Connect and start listening. Returns False if the channel is unavailable."""
        self.cancel_token.check()
        try:
            self._ws = self._connect(self.url, timeout=WS_CONNECT_TIMEOUT)
        except (websocket.WebSocketException, OSError) as e:
            logger.warning(f"[Progress] Websocket unavailable, continuing without progress: {e}")
            self._ws = None
            return False

        self._thread = threading.Thread(target=self._listen, name="comfyui-progress", daemon=True)
        self._thread.start()
        logger.debug(f"[Progress] Listening on {self.url}")
        return True

    def _teardown_expected(self) -> bool:
        return self._closing.is_set() or self.cancel_token.cancelled or self.cell.completed

    def _listen(self):
        ws = self._ws
        while not self._closing.is_set():
            try:
                ws.settimeout(self.recv_timeout)
                msg = ws.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except (websocket.WebSocketConnectionClosedException,
                    ConnectionResetError, BrokenPipeError) as e:
                if not self._teardown_expected():
                    logger.warning(f"[Progress] Channel dropped: {e}")
                    self.error = e
                break
            except (websocket.WebSocketException, OSError) as e:
                if self._teardown_expected():
                    break
                logger.error(f"[Progress] Listener error: {e}")
                self.error = e
                break

            if not msg or isinstance(msg, bytes):
                # Binary frames are live previews
                continue
            self.handle_message(msg)

    def handle_message(self, msg: str):
        try:
            data = json.loads(msg)
        except (ValueError, TypeError):
            logger.debug(f"[Progress] Ignoring non-JSON frame: {str(msg)[:80]}")
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get('type', '')
        msg_data = data.get('data') or {}

        if self.prompt_id and msg_data.get('prompt_id') not in (None, self.prompt_id):
            return

        if msg_type == 'progress':
            value = msg_data.get('value', 0)
            max_val = msg_data.get('max', 0)
            if max_val:
                self.cell.update(value / max_val)
        elif msg_type == 'executing':
            if msg_data.get('node') is None:
                self.cell.mark_completed()
        elif msg_type == 'execution_success':
            self.cell.mark_completed()
        elif msg_type == 'execution_error':
            logger.warning(
                f"[Progress] Server reported error in node {msg_data.get('node_id')}: "
                f"{msg_data.get('exception_message', 'unknown error')}"
            )

    def close(self):
        """Graceful close. Safe to call more than once."""
        self._closing.set()
        if self._ws is not None:
            try:
                self._ws.close(status=websocket.STATUS_GOING_AWAY)
            except (websocket.WebSocketException, OSError) as e:
                logger.debug(f"[Progress] Suppressed error while closing: {e}")
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.recv_timeout + 1.0)
        self._ws = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


__all__ = ['ProgressCell', 'CancelToken', 'ProgressChannel', 'websocket_url']
