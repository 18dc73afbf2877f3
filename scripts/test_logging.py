from __future__ import annotations

import json
import logging
import unittest

from intent_solver.common.logging import log_event, sanitize_text, sanitize_value
from intent_solver.daemon_runtime.logging import JsonFormatter, setup_logger

SECRET = "ed25519:" + "3" * 88


class SanitizeTests(unittest.TestCase):
    def test_masks_secret_keys(self) -> None:
        self.assertEqual(sanitize_text(f"key={SECRET}"), "key=ed25519:***")

    def test_strips_query_and_credential_paths_from_urls(self) -> None:
        masked = sanitize_text("calling https://rpc.example.com/v1/abcdefghijklmnopqrstuvwxyz123456?apikey=zzz now")
        self.assertEqual(masked, "calling https://rpc.example.com/*** now")

    def test_keeps_plain_urls(self) -> None:
        self.assertEqual(sanitize_text("GET http://matching:8080/health."), "GET http://matching:8080/health.")

    def test_masks_api_key_assignments(self) -> None:
        self.assertEqual(sanitize_text("api_key=abc123, other"), "api_key=***, other")

    def test_sanitizes_nested_values(self) -> None:
        self.assertEqual(sanitize_value({"keys": [SECRET], "n": 1}), {"keys": ["ed25519:***"], "n": 1})


class JsonFormatterTests(unittest.TestCase):
    def test_formats_event_fields_as_json(self) -> None:
        logger = logging.getLogger("test.json_formatter")
        with self.assertLogs(logger, level="INFO") as logs:
            log_event(logger, level="info", event="intent_processed", message="done", intent_id="i1", secret=SECRET)

        payload = json.loads(JsonFormatter().format(logs.records[0]))

        self.assertEqual(payload["event"], "intent_processed")
        self.assertEqual(payload["intent_id"], "i1")
        self.assertEqual(payload["secret"], "ed25519:***")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["message"], "done")

    def test_invalid_level_falls_back_to_info(self) -> None:
        logger = setup_logger("LOUD")
        self.assertEqual(logger.level, logging.INFO)
        self.assertFalse(logger.propagate)
        self.assertIsInstance(logger.handlers[0].formatter, JsonFormatter)


if __name__ == "__main__":
    unittest.main()
