#!/usr/bin/env python3
"""
test_backends.py - Backend Strategy Tests
═══════════════════════════════════════════════════════════════════════════════

Exercises each strategy against mocked HTTP sessions:

  1. Gemini:  request shape, content blocks, decode failures
  2. Grok:    native fan-out with placeholder items
  3. AI/ML:   capability validation, parameter filtering, video polling
  4. ComfyUI: graph checks, upload → queue → poll → view, failures, interrupt

Run: python tests/test_backends.py
"""
import sys
import json
import base64
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import requests
import websocket
from PIL import Image

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from mediagen.backends import (
    RunContext, GeminiBackend, GrokBackend, AIMLBackend, ComfyUIBackend,
    create_backend, list_available_backends,
)
from mediagen.credentials import StaticCredentialStore
from mediagen.errors import (
    InvalidInput, InvalidURL, InvalidConfiguration, NoWorkflow, NoSamplerNode,
    InvalidImageNode, UploadFailed, QueueFailed, FetchFailed, ApiError,
    ContentBlocked, DecodeFailed, GenerationCancelled,
)
from mediagen.models import (
    BackendType, GenerationRequest, GenerationOptions, ReferenceImage, MediaKind,
)
from mediagen.workflow_graph import WorkflowGraph
from fakes import (
    make_response, png_bytes, sample_workflow, img2img_workflow,
    FakeWebSocket, fake_connect, FakeComfyServer,
)

KEYS = StaticCredentialStore({"gemini": "g-key", "grok": "x-key", "aimlapi": "a-key"})
PNG = png_bytes()
PNG_B64 = base64.b64encode(PNG).decode("ascii")


def reference_image():
    return ReferenceImage(image=Image.new("RGB", (8, 8), (0, 128, 255)), original_data=PNG)


# ═══════════════════════════════════════════════════════════════════════════════
# GEMINI
# ═══════════════════════════════════════════════════════════════════════════════

class TestGemini(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.backend = GeminiBackend({}, KEYS, self.session)
        self.ctx = RunContext()

    def _run(self, body, status=200):
        self.session.post.return_value = make_response(status, body)
        payload = self.backend.build(GenerationRequest("a red fox", BackendType.GEMINI))
        return self.backend.execute(payload, self.ctx)

    def test_build_request_shape(self):
        request = GenerationRequest("a red fox", BackendType.GEMINI, images=[reference_image()])
        payload = self.backend.build(request)
        self.assertTrue(payload.url.endswith(":generateContent"))
        self.assertEqual(payload.headers["x-goog-api-key"], "g-key")
        parts = payload.body["contents"][0]["parts"]
        self.assertEqual(parts[0], {"text": "a red fox"})
        self.assertEqual(parts[1]["inline_data"]["mime_type"], "image/jpeg")
        self.assertEqual(payload.body["generationConfig"]["responseModalities"], ["TEXT", "IMAGE"])
        self.session.post.assert_not_called()

    def test_missing_key(self):
        backend = GeminiBackend({}, StaticCredentialStore({}), self.session)
        with self.assertRaises(InvalidConfiguration):
            backend.build(GenerationRequest("a red fox", BackendType.GEMINI))

    def test_too_many_images(self):
        request = GenerationRequest("x", BackendType.GEMINI, images=[reference_image()] * 5)
        with self.assertRaises(InvalidInput):
            self.backend.build(request)

    def test_image_and_text(self):
        artifacts = self._run({"candidates": [{"content": {"parts": [
            {"text": "Here is your fox."},
            {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
        ]}}]})
        self.assertEqual(len(artifacts), 1)
        self.assertEqual(artifacts[0].data, PNG)
        self.assertEqual(artifacts[0].caption, "Here is your fox.")

    def test_text_only_reply(self):
        artifacts = self._run({"candidates": [{"content": {"parts": [{"text": "I can't draw."}]}}]})
        self.assertIsNone(artifacts[0].data)
        self.assertEqual(artifacts[0].caption, "I can't draw.")

    def test_prompt_feedback_block(self):
        with self.assertRaises(ContentBlocked):
            self._run({"promptFeedback": {"blockReason": "SAFETY"}})

    def test_finish_reason_block(self):
        with self.assertRaises(ContentBlocked):
            self._run({"candidates": [{"finishReason": "IMAGE_SAFETY", "content": {}}]})

    def test_embedded_error_with_safety_wording(self):
        """A 200 body carrying an error object is still a failure."""
        with self.assertRaises(ContentBlocked) as cm:
            self._run({"error": {"message": "Request rejected: usage policy violation", "code": 400}})
        self.assertIn("[Content policy]", cm.exception.summary)

    def test_http_error_keeps_status(self):
        with self.assertRaises(ApiError) as cm:
            self._run({"error": {"message": "API key not valid"}}, status=400)
        self.assertNotIsInstance(cm.exception, ContentBlocked)
        self.assertEqual(cm.exception.status_code, 400)
        self.assertIn("API key not valid", cm.exception.summary)
        self.assertIn("HTTP status: 400", cm.exception.detail)

    def test_bad_base64(self):
        with self.assertRaises(DecodeFailed):
            self._run({"candidates": [{"content": {"parts": [
                {"inlineData": {"mimeType": "image/png", "data": "!!not-base64!!"}},
            ]}}]})

    def test_no_candidates(self):
        with self.assertRaises(DecodeFailed):
            self._run({"candidates": []})

    def test_non_json_body(self):
        self.session.post.return_value = make_response(200, None, text="<html>")
        payload = self.backend.build(GenerationRequest("a red fox", BackendType.GEMINI))
        with self.assertRaises(DecodeFailed):
            self.backend.execute(payload, self.ctx)

    def test_transport_error(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")
        payload = self.backend.build(GenerationRequest("a red fox", BackendType.GEMINI))
        with self.assertRaises(ApiError):
            self.backend.execute(payload, self.ctx)

    def test_cancelled_before_send(self):
        payload = self.backend.build(GenerationRequest("a red fox", BackendType.GEMINI))
        self.ctx.cancel.cancel()
        with self.assertRaises(GenerationCancelled):
            self.backend.execute(payload, self.ctx)
        self.session.post.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════════
# GROK
# ═══════════════════════════════════════════════════════════════════════════════

class TestGrok(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.backend = GrokBackend({}, KEYS, self.session)

    def test_build(self):
        payload = self.backend.build(GenerationRequest("a cat", BackendType.GROK, batch_size=3))
        self.assertEqual(payload.headers["Authorization"], "Bearer x-key")
        self.assertEqual(payload.body["n"], 3)
        self.assertEqual(payload.body["response_format"], "b64_json")

    def test_batch_capped(self):
        payload = self.backend.build(GenerationRequest("a cat", BackendType.GROK, batch_size=25))
        self.assertEqual(payload.body["n"], 10)

    def test_rejects_images(self):
        with self.assertRaises(InvalidInput):
            self.backend.build(GenerationRequest("a cat", BackendType.GROK, images=[reference_image()]))

    def test_fan_out_with_missing_item(self):
        """Three entries, the middle one without media, keep their positions."""
        self.session.post.return_value = make_response(200, {"data": [
            {"b64_json": PNG_B64, "revised_prompt": "a fluffy cat"},
            {},
            {"url": "https://imgen.x.ai/3.png"},
        ]})
        self.session.get.return_value = make_response(200, content=PNG)
        payload = self.backend.build(GenerationRequest("a cat", BackendType.GROK, batch_size=3))
        artifacts = self.backend.execute(payload, RunContext())

        self.assertEqual(len(artifacts), 3)
        self.assertEqual(artifacts[0].caption, "a fluffy cat")
        self.assertIsNone(artifacts[1].data)
        self.assertEqual(artifacts[1].caption, "No output for item 2")
        self.assertEqual(artifacts[2].data, PNG)
        self.session.get.assert_called_once()

    def test_download_failure(self):
        self.session.post.return_value = make_response(200, {"data": [{"url": "https://imgen.x.ai/1.png"}]})
        self.session.get.return_value = make_response(404, text="gone")
        payload = self.backend.build(GenerationRequest("a cat", BackendType.GROK))
        with self.assertRaises(FetchFailed):
            self.backend.execute(payload, RunContext())


# ═══════════════════════════════════════════════════════════════════════════════
# AI/ML API
# ═══════════════════════════════════════════════════════════════════════════════

class TestAIMLValidation(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()

    def _build(self, model, images=(), uploader=None, **opts):
        backend = AIMLBackend({}, KEYS, self.session, uploader=uploader)
        request = GenerationRequest("a harbour at night", BackendType.AIMLAPI, images=images,
                                    options=GenerationOptions(model=model, **opts))
        return backend.build(request)

    def test_edit_model_requires_image(self):
        with self.assertRaises(ApiError):
            self._build("bytedance/uso")
        self.session.post.assert_not_called()

    def test_text_model_rejects_image(self):
        with self.assertRaises(ApiError):
            self._build("bytedance/seedream-v4-text-to-image", images=[reference_image()])
        self.session.post.assert_not_called()

    def test_too_many_images(self):
        with self.assertRaises(ApiError):
            self._build("alibaba/qwen-image-edit", images=[reference_image()] * 2)

    def test_no_model(self):
        with self.assertRaises(InvalidInput):
            self._build("")

    def test_only_supported_params_sent(self):
        payload = self._build("bytedance/seedream-v4-text-to-image", seed=5, guidance_scale=3.0)
        self.assertEqual(payload.body["seed"], 5)
        self.assertEqual(payload.body["num_images"], 1)
        self.assertNotIn("guidance_scale", payload.body)
        self.assertNotIn("strength", payload.body)
        self.assertEqual(payload.body["image_size"], "square_hd")

    def _build_batch(self, model, batch_size):
        backend = AIMLBackend({}, KEYS, self.session)
        return backend.build(GenerationRequest("a harbour at night", BackendType.AIMLAPI,
                                               options=GenerationOptions(model=model),
                                               batch_size=batch_size))

    def test_batch_uses_num_images_when_supported(self):
        payload = self._build_batch("bytedance/seedream-v4-text-to-image", 3)
        self.assertEqual(payload.body["num_images"], 3)
        self.assertEqual(payload.repeat, 1)

    def test_batch_repeats_calls_without_num_images(self):
        for model in ("flux/dev", "dall-e-2", "recraft-v3",
                      "kling-video/v1.6/standard/text-to-video"):
            payload = self._build_batch(model, 3)
            self.assertEqual(payload.repeat, 3, model)
            self.assertNotIn("num_images", payload.body)

    def test_custom_resolution_clamped(self):
        payload = self._build("flux-pro", width=2000, height=800)
        self.assertEqual(payload.body["image_size"], {"width": 1440, "height": 800})

    def test_inline_image(self):
        payload = self._build("alibaba/qwen-image-edit", images=[reference_image()])
        self.assertTrue(payload.body["image"].startswith("data:image/jpeg;base64,"))
        self.assertEqual(payload.pending_images, [])

    def test_url_only_model_without_host(self):
        with self.assertRaises(InvalidConfiguration):
            self._build("bytedance/uso", images=[reference_image()])

    def test_url_only_model_uploads_in_prepare(self):
        uploader = MagicMock()
        uploader.upload.return_value = "https://i.ibb.co/abc/input.jpg"
        payload = self._build("bytedance/uso", images=[reference_image()], uploader=uploader)
        self.assertNotIn("image_urls", payload.body)
        uploader.upload.assert_not_called()

        backend = AIMLBackend({}, KEYS, self.session, uploader=uploader)
        prepared = backend.prepare(payload, RunContext())
        self.assertEqual(prepared.body["image_urls"], ["https://i.ibb.co/abc/input.jpg"])
        self.assertEqual(prepared.pending_images, [])
        self.assertNotIn("image_urls", payload.body)


class TestAIMLExecute(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.backend = AIMLBackend({"poll_interval": 0, "timeout": 60}, KEYS, self.session)
        self.ctx = RunContext()

    def _video_payload(self):
        request = GenerationRequest(
            "waves crashing", BackendType.AIMLAPI,
            options=GenerationOptions(model="kling-video/v1.6/standard/text-to-video"))
        return self.backend.build(request)

    def test_image_model(self):
        self.session.post.return_value = make_response(200, {"images": [{"url": "https://cdn/1.png"}]})
        self.session.get.return_value = make_response(200, content=PNG)
        request = GenerationRequest("a harbour", BackendType.AIMLAPI,
                                    options=GenerationOptions(model="flux/dev"))
        payload = self.backend.build(request)
        self.assertTrue(payload.url.endswith("/v1/images/generations"))
        artifacts = self.backend.execute(payload, self.ctx)
        self.assertEqual([a.data for a in artifacts], [PNG])

    def test_video_endpoint(self):
        payload = self._video_payload()
        self.assertTrue(payload.is_video)
        self.assertEqual(payload.url, "https://api.aimlapi.com/v2/generate/video/kling/generation")
        self.assertEqual(payload.body["duration"], 5)

    def test_video_poll_until_completed(self):
        self.session.post.return_value = make_response(200, {"id": "gen-1", "status": "queued"})
        self.session.get.side_effect = [
            make_response(200, {"id": "gen-1", "status": "generating"}),
            make_response(200, {"id": "gen-1", "status": "completed",
                                "video": {"url": "https://cdn/out.mp4"}}),
            make_response(200, content=b"\x00\x00\x00\x18ftypmp42"),
        ]
        artifacts = self.backend.execute(self._video_payload(), self.ctx)

        self.assertEqual(artifacts[0].media_kind, MediaKind.VIDEO)
        self.assertEqual(artifacts[0].extension, "mp4")
        poll_call = self.session.get.call_args_list[0]
        self.assertEqual(poll_call.kwargs["params"], {"generation_id": "gen-1"})
        self.assertEqual(self.session.get.call_args_list[2].args[0], "https://cdn/out.mp4")

    def test_video_failed(self):
        self.session.post.return_value = make_response(200, {"id": "gen-2"})
        self.session.get.return_value = make_response(
            200, {"id": "gen-2", "status": "failed", "message": "insufficient credits"})
        with self.assertRaises(ApiError) as cm:
            self.backend.execute(self._video_payload(), self.ctx)
        self.assertNotIsInstance(cm.exception, ContentBlocked)
        self.assertIn("insufficient credits", cm.exception.summary)

    def test_video_moderated(self):
        self.session.post.return_value = make_response(200, {"id": "gen-3"})
        self.session.get.return_value = make_response(
            200, {"id": "gen-3", "status": "failed", "error": {"message": "flagged by moderation"}})
        with self.assertRaises(ContentBlocked):
            self.backend.execute(self._video_payload(), self.ctx)

    def test_video_timeout(self):
        backend = AIMLBackend({"poll_interval": 0, "timeout": 0}, KEYS, self.session)
        self.session.post.return_value = make_response(200, {"id": "gen-4"})
        with self.assertRaises(ApiError) as cm:
            backend.execute(self._video_payload(), self.ctx)
        self.assertIn("no result or timeout", cm.exception.summary)
        self.session.get.assert_not_called()

    def test_video_submit_without_id(self):
        self.session.post.return_value = make_response(200, {"status": "queued"})
        with self.assertRaises(DecodeFailed):
            self.backend.execute(self._video_payload(), self.ctx)


# ═══════════════════════════════════════════════════════════════════════════════
# COMFYUI
# ═══════════════════════════════════════════════════════════════════════════════

def comfy_request(workflow=None, prompt="a neon city", images=(), **opts):
    graph = WorkflowGraph.from_wire(workflow if workflow is not None else sample_workflow())
    return GenerationRequest(prompt, BackendType.COMFYUI, images=images,
                             options=GenerationOptions(workflow=graph, **opts))


class TestComfyUIBuild(unittest.TestCase):

    def setUp(self):
        self.backend = ComfyUIBackend({"url": "http://localhost:8188"}, session=MagicMock())

    def test_injects_prompt_without_touching_source(self):
        request = comfy_request()
        payload = self.backend.build(request)
        self.assertEqual(payload.prompt_node_id, "6")
        self.assertEqual(payload.graph["6"].inputs["text"], "a neon city")
        self.assertEqual(request.options.workflow["6"].inputs["text"], "a castle on a hill")

    def test_empty_prompt_uses_node_text(self):
        payload = self.backend.build(comfy_request(prompt="  "))
        self.assertEqual(payload.prompt, "a castle on a hill")

    def test_no_workflow(self):
        request = GenerationRequest("x", BackendType.COMFYUI)
        with self.assertRaises(NoWorkflow):
            self.backend.build(request)

    def test_no_sampler(self):
        wf = sample_workflow()
        del wf["3"]
        with self.assertRaises(NoSamplerNode):
            self.backend.build(comfy_request(wf))

    def test_malformed_url(self):
        backend = ComfyUIBackend({"url": "localhost:8188"}, session=MagicMock())
        with self.assertRaises(InvalidURL):
            backend.build(comfy_request())

    def test_missing_url(self):
        backend = ComfyUIBackend({"url": ""}, session=MagicMock())
        with self.assertRaises(InvalidConfiguration):
            backend.build(comfy_request())

    def test_unknown_output_node(self):
        with self.assertRaises(InvalidInput):
            self.backend.build(comfy_request(output_node_id="99"))

    def test_image_without_loader(self):
        with self.assertRaises(InvalidImageNode):
            self.backend.build(comfy_request(images=[reference_image()]))

    def test_more_images_than_sinks(self):
        with self.assertRaises(InvalidInput):
            self.backend.build(comfy_request(img2img_workflow(), images=[reference_image()] * 2,
                                             image_node_ids=("10",)))


class TestComfyUIExecute(unittest.TestCase):

    def setUp(self):
        self.server = FakeComfyServer(polls_before_done=1)
        self.ws = FakeWebSocket([
            json.dumps({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 1}}}}),
            json.dumps({"type": "progress", "data": {"value": 5, "max": 10}}),
        ])
        self.backend = ComfyUIBackend({"url": "http://localhost:8188", "poll_interval": 0},
                                      session=self.server.session, ws_connect=fake_connect(self.ws))
        self.ctx = RunContext()

    def test_full_run(self):
        payload = self.backend.build(comfy_request())
        artifacts = self.backend.execute(payload, self.ctx, seed=77)

        self.assertEqual(len(artifacts), 1)
        self.assertEqual(artifacts[0].data, self.server.image)
        self.assertEqual(artifacts[0].seed, 77)
        queued = self.server.queued[0]
        self.assertEqual(queued["prompt"]["3"]["inputs"]["seed"], 77)
        self.assertEqual(queued["prompt"]["6"]["inputs"]["text"], "a neon city")
        self.assertIn(queued["client_id"], self.ws.url)
        self.assertTrue(self.ws.url.startswith("ws://localhost:8188/ws?clientId="))
        self.assertEqual(self.server.polls[queued["prompt_id"]], 2)
        self.assertTrue(self.ctx.progress.completed)
        self.assertEqual(self.ws.close_status, websocket.STATUS_GOING_AWAY)
        self.assertEqual(payload.graph.sampler_seed(), 42)

    def test_view_params(self):
        payload = self.backend.build(comfy_request())
        self.backend.execute(payload, self.ctx)
        view_call = [c for c in self.server.session.get.call_args_list if c.args[0].endswith('/view')][0]
        self.assertEqual(view_call.kwargs["params"]["type"], "output")
        self.assertTrue(view_call.kwargs["params"]["filename"].startswith("ComfyUI_"))

    def test_upload_then_queue(self):
        request = comfy_request(img2img_workflow(), images=[reference_image()])
        payload = self.backend.prepare(self.backend.build(request), self.ctx)
        self.assertEqual(payload.graph["10"].inputs["image"], "up_input.png")
        self.assertEqual(payload.uploads, [])

        self.backend.execute(payload, self.ctx, seed=1)
        self.assertEqual(self.server.queued[0]["prompt"]["10"]["inputs"]["image"], "up_input.png")
        self.assertEqual(self.server.urls("post")[0], "http://localhost:8188/upload/image")

    def test_upload_failure(self):
        session = MagicMock()
        session.post.return_value = make_response(500, text="disk full")
        backend = ComfyUIBackend({"url": "http://localhost:8188"}, session=session)
        payload = backend.build(comfy_request(img2img_workflow(), images=[reference_image()]))
        with self.assertRaises(UploadFailed):
            backend.prepare(payload, self.ctx)

    def test_queue_rejected(self):
        self.server.queue_status = [400]
        with self.assertRaises(QueueFailed):
            self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertTrue(self.ws.closed.is_set())

    def test_execution_error(self):
        self.server.history_error = {
            "status": {"status_str": "error", "completed": False, "messages": [
                ["execution_error", {"node_id": "3", "exception_message": "CUDA out of memory\n"}],
            ]},
            "outputs": {},
        }
        with self.assertRaises(ApiError) as cm:
            self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertIn("Node 3: CUDA out of memory", cm.exception.summary)
        self.assertTrue(self.ws.closed.is_set())

    def test_completed_without_image(self):
        self.server.history_error = {
            "status": {"status_str": "success", "completed": True},
            "outputs": {"9": {"text": ["done"]}},
        }
        with self.assertRaises(FetchFailed):
            self.backend.execute(self.backend.build(comfy_request()), self.ctx)

    def test_finished_poll_does_not_mark_completion(self):
        """Only a run that got its output, with the listener joined, marks the cell."""
        self.server.history_error = {
            "status": {"status_str": "success", "completed": True},
            "outputs": {"9": {"text": ["done"]}},
        }
        with self.assertRaises(FetchFailed):
            self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertFalse(self.ctx.progress.completed)
        self.assertTrue(self.ws.closed.is_set())

    def test_video_output(self):
        self.server.history_error = {
            "status": {"status_str": "success", "completed": True},
            "outputs": {"12": {"gifs": [{"filename": "clip_00001.mp4", "subfolder": "", "type": "output"}]}},
        }
        artifacts = self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertEqual(artifacts[0].media_kind, MediaKind.VIDEO)
        self.assertEqual(artifacts[0].mime_type, "video/mp4")

    def test_poll_timeout(self):
        backend = ComfyUIBackend({"url": "http://localhost:8188", "poll_interval": 0, "timeout": 0},
                                 session=FakeComfyServer(polls_before_done=100).session,
                                 ws_connect=fake_connect(self.ws))
        with self.assertRaises(ApiError) as cm:
            backend.execute(backend.build(comfy_request()), self.ctx)
        self.assertIn("no result or timeout", cm.exception.summary)

    def test_runs_without_progress_channel(self):
        def refuse(url, timeout=None):
            raise ConnectionRefusedError("refused")
        backend = ComfyUIBackend({"url": "http://localhost:8188", "poll_interval": 0},
                                 session=self.server.session, ws_connect=refuse)
        artifacts = backend.execute(backend.build(comfy_request()), self.ctx)
        self.assertEqual(artifacts[0].data, self.server.image)

    def test_cancel_during_poll(self):
        self.server.polls_before_done = 5
        self.server.on_history = lambda count: self.ctx.cancel.cancel()
        with self.assertRaises(GenerationCancelled):
            self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertFalse(any(u.endswith('/view') for u in self.server.urls("get")))
        self.assertTrue(self.ws.closed.is_set())

    def test_interrupt_only_while_running(self):
        self.backend.interrupt()
        self.assertNotIn("http://localhost:8188/interrupt", self.server.urls("post"))

        self.server.on_history = lambda count: self.backend.interrupt()
        self.backend.execute(self.backend.build(comfy_request()), self.ctx)
        self.assertIn("http://localhost:8188/interrupt", self.server.urls("post"))

    def test_interrupt_disabled(self):
        backend = ComfyUIBackend({"url": "http://localhost:8188", "poll_interval": 0,
                                  "interrupt_on_cancel": False},
                                 session=self.server.session, ws_connect=fake_connect(self.ws))
        self.server.on_history = lambda count: backend.interrupt()
        backend.execute(backend.build(comfy_request()), self.ctx)
        self.assertNotIn("http://localhost:8188/interrupt", self.server.urls("post"))


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

class TestFactory(unittest.TestCase):

    def test_section_per_backend(self):
        config = {"backends": {"grok": {"model": "grok-test"}, "comfyui": {"url": "http://gpu:8188"}}}
        grok = create_backend("grok", config, KEYS)
        comfy = create_backend(BackendType.COMFYUI, config, KEYS)
        self.assertIsInstance(grok, GrokBackend)
        self.assertEqual(grok.config["model"], "grok-test")
        self.assertEqual(comfy.api_url, "http://gpu:8188")

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            create_backend("midjourney", {}, KEYS)

    def test_availability(self):
        config = {"backends": {"comfyui": {"url": ""}}}
        status = list_available_backends(config, StaticCredentialStore({"gemini": "k"}))
        self.assertTrue(status["gemini"][0])
        self.assertFalse(status["grok"][0])
        self.assertFalse(status["comfyui"][0])
        self.assertEqual(set(status), {"gemini", "comfyui", "grok", "aimlapi"})


if __name__ == '__main__':
    unittest.main()
