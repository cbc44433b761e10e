#!/usr/bin/env python3
"""
test_png_workflow.py - Embedded Workflow Extractor Tests
═══════════════════════════════════════════════════════════════════════════════

  1. Recovering API / editor workflows from tEXt chunks
  2. zTXt fallback through Pillow metadata
  3. Truncated / malformed / non-PNG input never raises
  4. Node listing labels and ordering

Run: python tests/test_png_workflow.py
"""
import sys
import json
import unittest
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from mediagen.png_workflow import (
    extract, extract_workflow_json, scan_workflow_nodes, PNG_SIGNATURE,
)
from fakes import png_bytes, sample_workflow, img2img_workflow


class TestExtractWorkflowJson(unittest.TestCase):

    def test_api_format_prompt_chunk(self):
        text = json.dumps(sample_workflow())
        data = png_bytes(text={"prompt": text})
        self.assertEqual(json.loads(extract_workflow_json(data)), sample_workflow())

    def test_editor_format_workflow_chunk(self):
        editor = {"nodes": [{"id": 6, "type": "CLIPTextEncode", "widgets_values": ["sunset"]}],
                  "links": []}
        data = png_bytes(text={"workflow": json.dumps(editor)})
        self.assertEqual(json.loads(extract_workflow_json(data)), editor)

    def test_unrelated_text_chunk_ignored(self):
        data = png_bytes(text={"Software": "paint"})
        self.assertIsNone(extract_workflow_json(data))

    def test_compressed_chunk_via_pillow(self):
        data = png_bytes(text={"prompt": json.dumps(sample_workflow())}, zip_text=True)
        self.assertNotIn(b'tEXt', data)
        self.assertEqual(json.loads(extract_workflow_json(data)), sample_workflow())

    def test_non_png(self):
        self.assertIsNone(extract_workflow_json(b'GIF89a' + b'\x00' * 32))
        self.assertIsNone(extract_workflow_json(b''))
        self.assertIsNone(extract_workflow_json("not bytes"))


class TestExtractNeverRaises(unittest.TestCase):

    def setUp(self):
        self.data = png_bytes(text={"prompt": json.dumps(sample_workflow())})

    def test_full_file(self):
        nodes = extract(self.data)
        self.assertEqual([n.id for n in nodes], ["6", "7"])
        self.assertEqual(nodes[0].prompt_text, "a castle on a hill")

    def test_truncated_inside_text_chunk(self):
        """A file cut mid-chunk yields nothing, not an exception."""
        cut = self.data.index(b'tEXt') + 20
        self.assertEqual(extract(self.data[:cut]), [])

    def test_every_prefix(self):
        for end in range(0, len(self.data), 7):
            result = extract(self.data[:end])
            self.assertIsInstance(result, list)

    def test_signature_only(self):
        self.assertEqual(extract(PNG_SIGNATURE), [])

    def test_bogus_chunk_length(self):
        data = PNG_SIGNATURE + b'\xff\xff\xff\xf0tEXtprompt\x00{}'
        self.assertEqual(extract(data), [])

    def test_invalid_json_payload(self):
        data = png_bytes(text={"prompt": "{not json"})
        self.assertEqual(extract(data), [])

    def test_png_without_workflow(self):
        self.assertEqual(extract(png_bytes()), [])


class TestScanWorkflowNodes(unittest.TestCase):

    def test_lists_by_kind(self):
        found = scan_workflow_nodes(img2img_workflow())
        self.assertEqual([n.id for n in found.prompt_nodes], ["6", "7"])
        self.assertEqual([n.id for n in found.output_nodes], ["9"])
        self.assertEqual([n.id for n in found.image_nodes], ["10"])
        self.assertEqual(found.output_nodes[0].label, "Node 9: SaveImage")
        self.assertEqual(found.image_nodes[0].label, "Node 10: LoadImage")

    def test_long_text_truncated_in_label(self):
        wf = {"6": {"class_type": "CLIPTextEncode", "inputs": {"text": "x" * 80}}}
        node = scan_workflow_nodes(wf).prompt_nodes[0]
        self.assertEqual(node.label, "Node 6: " + "x" * 50 + "...")
        self.assertEqual(node.prompt_text, "x" * 80)

    def test_short_text_not_suffixed(self):
        wf = {"6": {"class_type": "CLIPTextEncode", "inputs": {"text": "y" * 50}}}
        self.assertEqual(scan_workflow_nodes(wf).prompt_nodes[0].label, "Node 6: " + "y" * 50)

    def test_empty_text_label(self):
        wf = {"6": {"class_type": "CLIPTextEncode", "inputs": {"text": ""}}}
        self.assertEqual(scan_workflow_nodes(wf).prompt_nodes[0].label, "Node 6")

    def test_editor_format(self):
        editor = {"nodes": [
            {"id": 7, "type": "CLIPTextEncode", "widgets_values": ["ugly"]},
            {"id": 2, "type": "CLIPTextEncode", "widgets_values": ["pretty"]},
            {"id": 9, "type": "PreviewImage", "widgets_values": []},
        ]}
        found = scan_workflow_nodes(editor)
        self.assertEqual([n.id for n in found.prompt_nodes], ["2", "7"])
        self.assertEqual(found.prompt_nodes[0].prompt_text, "pretty")
        self.assertEqual([n.id for n in found.output_nodes], ["9"])

    def test_not_a_workflow(self):
        self.assertTrue(scan_workflow_nodes([1, 2, 3]).is_empty())


if __name__ == '__main__':
    unittest.main()
