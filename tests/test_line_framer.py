"""Tests for stdout line framing and protocol message decoding."""

import json
import unittest

from runtimebridge.supervisor.framing import (
    EventMessage,
    LineFramer,
    MalformedLine,
    ResponseMessage,
    decode_message,
    encode_request,
)


class LineFramerTests(unittest.TestCase):
    def test_partial_chunks_are_buffered_until_newline(self) -> None:
        framer = LineFramer()
        self.assertEqual(framer.feed(b'{"type":"ag'), [])
        self.assertGreater(framer.pending_bytes, 0)
        self.assertEqual(framer.feed(b'ent_start"}\n{"a"'), ['{"type":"agent_start"}'])
        self.assertEqual(framer.feed(b":1}\n"), ['{"a":1}'])
        self.assertEqual(framer.pending_bytes, 0)

    def test_blank_lines_and_whitespace_are_dropped(self) -> None:
        framer = LineFramer()
        self.assertEqual(framer.feed(b"\n   \r\n  {}  \r\n\n"), ["{}"])

    def test_multibyte_character_split_across_chunks(self) -> None:
        framer = LineFramer()
        encoded = '{"text":"café"}\n'.encode("utf-8")
        split_at = encoded.index(b"\xc3") + 1
        self.assertEqual(framer.feed(encoded[:split_at]), [])
        self.assertEqual(framer.feed(encoded[split_at:]), ['{"text":"café"}'])

    def test_reset_discards_partial_line(self) -> None:
        framer = LineFramer()
        framer.feed(b'{"partial"')
        framer.reset()
        self.assertEqual(framer.feed(b"{}\n"), ["{}"])


class DecodeMessageTests(unittest.TestCase):
    def test_response_with_id_is_routed_as_response(self) -> None:
        message = decode_message('{"id":"req-1","type":"response","success":true,"data":{"model":"x"}}')
        self.assertIsInstance(message, ResponseMessage)
        self.assertEqual(message.id, "req-1")
        self.assertTrue(message.success)
        self.assertEqual(message.data, {"model": "x"})

    def test_missing_success_counts_as_success(self) -> None:
        message = decode_message('{"id":"req-2","type":"response"}')
        self.assertTrue(message.success)
        self.assertIsNone(message.data)

    def test_failed_response_keeps_error_text(self) -> None:
        message = decode_message('{"id":"req-3","type":"response","success":false,"error":"boom"}')
        self.assertFalse(message.success)
        self.assertEqual(message.error, "boom")

    def test_response_without_id_is_treated_as_event(self) -> None:
        message = decode_message('{"type":"response","success":true}')
        self.assertIsInstance(message, EventMessage)
        self.assertEqual(message.event_type, "response")

    def test_untyped_object_is_unknown_event(self) -> None:
        message = decode_message('{"data":{"n":1}}')
        self.assertIsInstance(message, EventMessage)
        self.assertEqual(message.event_type, "unknown")
        self.assertEqual(message.data, {"n": 1})

    def test_malformed_and_non_object_lines(self) -> None:
        malformed = decode_message("not json")
        self.assertIsInstance(malformed, MalformedLine)
        self.assertEqual(malformed.line, "not json")
        self.assertIsNone(decode_message("[1, 2, 3]"))
        self.assertIsNone(decode_message('"text"'))


class EncodeRequestTests(unittest.TestCase):
    def test_request_is_single_json_line(self) -> None:
        encoded = encode_request("req-7", "set_model", {"provider": "openai", "modelId": "gpt"})
        self.assertTrue(encoded.endswith(b"\n"))
        self.assertEqual(encoded.count(b"\n"), 1)
        payload = json.loads(encoded)
        self.assertEqual(
            payload,
            {"provider": "openai", "modelId": "gpt", "id": "req-7", "type": "set_model"},
        )

    def test_params_cannot_override_envelope(self) -> None:
        payload = json.loads(encode_request("req-8", "prompt", {"id": "evil", "type": "abort"}))
        self.assertEqual(payload["id"], "req-8")
        self.assertEqual(payload["type"], "prompt")

    def test_embedded_newlines_are_escaped(self) -> None:
        encoded = encode_request("req-9", "prompt", {"message": "line one\nline two"})
        self.assertEqual(encoded.count(b"\n"), 1)
        self.assertEqual(json.loads(encoded)["message"], "line one\nline two")


if __name__ == "__main__":
    unittest.main()
