import json
import logging
import unittest

from csvbench.util.logging import log_structured_event, new_run_id


class _CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def _capture_logger(name, level=logging.INFO):
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    handler = _CaptureHandler()
    logger.handlers = [handler]
    return logger, handler


class TestStructuredLogging(unittest.TestCase):
    def test_new_run_id_prefix(self):
        run_id = new_run_id("bench")
        self.assertTrue(run_id.startswith("bench_"))
        self.assertEqual(len(run_id), len("bench_") + 12)

    def test_new_run_id_without_prefix(self):
        self.assertEqual(len(new_run_id()), 12)

    def test_log_structured_event_emits_json_message(self):
        logger, handler = _capture_logger("csvbench.tests.structured_logging")

        payload = log_structured_event(
            logger,
            logging.INFO,
            "trial_timeout",
            implementation="csv_scan",
            attempt=2,
            timeout_seconds=0.5,
            error=None,
        )
        self.assertEqual(payload["event"], "trial_timeout")
        self.assertNotIn("error", payload)
        self.assertEqual(len(handler.messages), 1)

        decoded = json.loads(handler.messages[0])
        self.assertEqual(decoded["event"], "trial_timeout")
        self.assertEqual(decoded["implementation"], "csv_scan")
        self.assertEqual(decoded["attempt"], 2)
        self.assertEqual(decoded["timeout_seconds"], 0.5)

    def test_log_structured_event_skips_disabled_levels(self):
        logger, handler = _capture_logger("csvbench.tests.structured_logging.disabled", logging.WARNING)

        payload = log_structured_event(logger, logging.INFO, "dataset_completed", dataset="small")

        self.assertEqual(payload["dataset"], "small")
        self.assertEqual(handler.messages, [])

    def test_log_structured_event_redacts_sensitive_fields(self):
        logger, handler = _capture_logger("csvbench.tests.structured_logging.redaction")

        payload = log_structured_event(
            logger,
            logging.INFO,
            "auth_event",
            access_token="abc123",
            password="hunter2",
            retries=2,
        )
        self.assertEqual(payload["access_token"], "<redacted>")
        self.assertEqual(payload["password"], "<redacted>")
        self.assertEqual(payload["retries"], 2)

        decoded = json.loads(handler.messages[0])
        self.assertEqual(decoded["access_token"], "<redacted>")

    def test_log_structured_event_truncates_large_strings(self):
        logger, handler = _capture_logger("csvbench.tests.structured_logging.truncation")

        huge = "x" * 3000
        payload = log_structured_event(logger, logging.INFO, "query_failed", error=huge)

        self.assertLess(len(payload["error"]), len(huge))
        self.assertTrue(payload["error"].endswith("...<truncated>"))
        decoded = json.loads(handler.messages[0])
        self.assertEqual(decoded["error"], payload["error"])


if __name__ == "__main__":
    unittest.main()
