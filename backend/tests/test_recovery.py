"""Unit tests for failure classification, retries and user-facing messages."""
from __future__ import annotations

import asyncio
import unittest

from src.tool_orchestrator.config import RetrySettings
from src.tool_orchestrator.errors import RetryExhaustedError, ToolExecutionError
from src.tool_orchestrator.recovery import (
    FailureKind,
    RecoveryPolicy,
    describe_capability,
    error_category,
    is_transient,
    user_facing_message,
)

from fakes import RecordingSleep


class TestClassification(unittest.TestCase):
    def setUp(self) -> None:
        self.policy = RecoveryPolicy()

    def test_timeout_is_transient(self) -> None:
        result = self.policy.classify(Exception("Request timeout after 30s"))
        self.assertEqual(result.kind, FailureKind.TRANSIENT)

    def test_known_capability_plus_unauthorized_is_credential_missing(self) -> None:
        result = self.policy.classify(Exception("GitHub API returned 401 Unauthorized"))
        self.assertEqual(result.kind, FailureKind.CREDENTIAL_MISSING)
        self.assertEqual(result.toolkit, "github")

    def test_not_connected_names_toolkit(self) -> None:
        result = self.policy.classify(ToolExecutionError("gmail account is not connected"))
        self.assertEqual((result.kind, result.toolkit), (FailureKind.CREDENTIAL_MISSING, "gmail"))

    def test_toolkit_taken_from_tool_slug(self) -> None:
        result = self.policy.classify(Exception("Authentication required"), "SLACK_SEND_MESSAGE")
        self.assertEqual((result.kind, result.toolkit), (FailureKind.CREDENTIAL_MISSING, "slack"))

    def test_auth_phrase_without_toolkit_is_terminal(self) -> None:
        result = self.policy.classify(Exception("Unauthorized"))
        self.assertEqual(result.kind, FailureKind.TERMINAL)

    def test_other_errors_are_terminal(self) -> None:
        result = self.policy.classify(Exception("Random error without toolkit"))
        self.assertEqual(result.kind, FailureKind.TERMINAL)
        self.assertIsNone(result.toolkit)

    def test_credential_signature_beats_transient_signal(self) -> None:
        result = self.policy.classify(Exception("Slack not connected (connection timeout while checking)"))
        self.assertEqual(result.kind, FailureKind.CREDENTIAL_MISSING)

    def test_transient_signals(self) -> None:
        for error in (
            Exception("rate limited"),
            Exception("Service Unavailable"),
            Exception("connection reset by peer"),
            ToolExecutionError("HTTP 503", status_code=503),
            ToolExecutionError("boom", transient=True),
            asyncio.TimeoutError(),
            ConnectionError("refused"),
        ):
            with self.subTest(error=repr(error)):
                self.assertTrue(is_transient(error))

    def test_not_transient(self) -> None:
        self.assertFalse(is_transient(ToolExecutionError("HTTP 404: missing", status_code=404)))
        self.assertFalse(is_transient(RetryExhaustedError(Exception("timeout"), 3)))

    def test_status_code_in_text_needs_a_label(self) -> None:
        self.assertTrue(is_transient(Exception("upstream returned HTTP 502")))
        self.assertTrue(is_transient(Exception("status: 429")))
        self.assertFalse(is_transient(Exception("Issue #502 does not exist")))

    def test_validation_messages_are_terminal(self) -> None:
        for message in (
            "Page size must be at most 500",
            "Invalid repository name, please try again with owner/name",
            "Issue #502 does not exist",
        ):
            with self.subTest(message=message):
                result = self.policy.classify(Exception(message), "GITHUB_LIST_ISSUES")
                self.assertEqual(result.kind, FailureKind.TERMINAL)


class TestRetry(unittest.IsolatedAsyncioTestCase):
    async def test_succeeds_after_transient_failures(self) -> None:
        sleep = RecordingSleep()
        policy = RecoveryPolicy(sleep=sleep)
        attempts: list[int] = []

        async def operation(attempt: int) -> str:
            attempts.append(attempt)
            if attempt < 3:
                raise Exception("429 Too Many Requests")
            return "ok"

        self.assertEqual(await policy.run(operation), "ok")
        self.assertEqual(attempts, [1, 2, 3])
        self.assertEqual(sleep.delays, [2.0, 4.0])

    async def test_exhaustion_wraps_last_error(self) -> None:
        sleep = RecordingSleep()
        policy = RecoveryPolicy(sleep=sleep)

        async def operation(attempt: int) -> None:
            raise Exception(f"rate limited #{attempt}")

        with self.assertRaises(RetryExhaustedError) as ctx:
            await policy.run(operation)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIn("#3", str(ctx.exception.last_error))
        self.assertEqual(sleep.delays, [2.0, 4.0])

    async def test_non_retryable_error_propagates_immediately(self) -> None:
        sleep = RecordingSleep()
        policy = RecoveryPolicy(sleep=sleep)
        calls = 0

        async def operation(attempt: int) -> None:
            nonlocal calls
            calls += 1
            raise ValueError("bad input")

        with self.assertRaises(ValueError):
            await policy.run(operation)
        self.assertEqual(calls, 1)
        self.assertEqual(sleep.delays, [])

    async def test_delay_is_capped(self) -> None:
        sleep = RecordingSleep()
        settings = RetrySettings(max_attempts=5, initial_delay=10.0, max_delay=30.0)
        policy = RecoveryPolicy(settings=settings, sleep=sleep)

        async def operation(attempt: int) -> None:
            raise TimeoutError()

        with self.assertRaises(RetryExhaustedError):
            await policy.run(operation)
        self.assertEqual(sleep.delays, [10.0, 20.0, 30.0, 30.0])


class TestUserFacingMessages(unittest.TestCase):
    def test_describe_capability(self) -> None:
        self.assertEqual(describe_capability("GITHUB_STAR_REPO"), "the github star repo tool")
        self.assertEqual(describe_capability(None), "the requested tool")

    def test_categories(self) -> None:
        cases = {
            "Request timed out": "timeout",
            "rate limited": "rate_limit",
            "403 Forbidden": "permission",
            "network unreachable": "connection",
            "Repository not found": "not_found",
            "Invalid arguments: missing repo": "invalid_input",
            "kaboom": "generic",
        }
        for text, category in cases.items():
            with self.subTest(text=text):
                self.assertEqual(error_category(Exception(text)), category)

    def test_category_unwraps_exhausted_retries(self) -> None:
        self.assertEqual(error_category(RetryExhaustedError(Exception("rate limited"), 3)), "rate_limit")

    def test_message_names_capability_and_hides_raw_error(self) -> None:
        message = user_facing_message(Exception("HTTP 404: {'trace': 'x'}"), "GITHUB_GET_REPO")
        self.assertTrue(message.startswith("The github get repo tool"))
        self.assertNotIn("trace", message)


if __name__ == "__main__":
    unittest.main()
