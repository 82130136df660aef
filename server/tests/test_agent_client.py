from __future__ import annotations

import threading
import unittest

from longwalk.config import AgentClientConfig
from longwalk.errors import FailureKind, ServiceError, ServiceTimeout
from longwalk.llm.agent_client import (
    AcceptDecision,
    AgentClient,
    CallToken,
    DisabledReasoningService,
    ServiceRequest,
    TaskKind,
)

from fakes import FailingService, ScriptedService


def _request(task: TaskKind, owner: str = "prop1") -> ServiceRequest:
    return ServiceRequest(token=CallToken("proposal", owner, 0), task=task, context={"owner": owner})


class AgentClientTests(unittest.TestCase):
    def _client(self, service, timeout_sec: float = 5.0) -> AgentClient:
        client = AgentClient(service, AgentClientConfig(timeout_sec=timeout_sec, max_workers=4))
        self.addCleanup(client.close)
        return client

    def test_valid_answer_becomes_typed_decision(self) -> None:
        client = self._client(ScriptedService(lambda task, context: {"accept": True, "reason": "why not"}))

        [result] = client.dispatch([_request(TaskKind.ACCEPT)])

        self.assertTrue(result.ok)
        self.assertIsInstance(result.decision, AcceptDecision)
        self.assertTrue(result.decision.accept)
        self.assertEqual(result.token, CallToken("proposal", "prop1", 0))
        self.assertEqual(client.stats, {"requests": 1, "ok": 1})

    def test_schema_violations_are_invalid(self) -> None:
        answers = {
            "blank": {"text": "   "},
            "extra": {"text": "hello", "mood": "great"},
            "missing": {},
        }
        client = self._client(ScriptedService(lambda task, context: answers[context["owner"]]))

        results = client.dispatch([_request(TaskKind.PROPOSE, owner) for owner in answers])

        self.assertEqual([result.failure.kind for result in results], [FailureKind.INVALID] * 3)
        self.assertEqual(client.stats["failed_invalid"], 3)

    def test_service_errors_map_to_failure_kinds(self) -> None:
        cases = [
            (ServiceError("bad gateway"), FailureKind.ERROR),
            (ServiceTimeout("slow upstream"), FailureKind.TIMEOUT),
            (RuntimeError("boom"), FailureKind.ERROR),
        ]
        for exc, expected in cases:
            with self.subTest(exc=type(exc).__name__):
                client = self._client(FailingService(exc))
                [result] = client.dispatch([_request(TaskKind.DIALOGUE_TURN)])
                self.assertFalse(result.ok)
                self.assertIs(result.failure.kind, expected)

    def test_disabled_service_short_circuits(self) -> None:
        client = self._client(DisabledReasoningService())

        results = client.dispatch([_request(TaskKind.PROPOSE), _request(TaskKind.ACCEPT, "prop2")])

        self.assertEqual([result.failure.kind for result in results], [FailureKind.DISABLED] * 2)
        self.assertIsNone(client._executor)
        self.assertEqual(client.dispatch([]), [])

    def test_slow_calls_time_out_and_order_is_kept(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        def handler(task: TaskKind, context: dict) -> dict:
            if context["owner"] == "slow":
                release.wait(5.0)
            return {"text": f"hello from {context['owner']}"}

        client = self._client(ScriptedService(handler), timeout_sec=0.2)

        results = client.dispatch([_request(TaskKind.PROPOSE, "fast1"), _request(TaskKind.PROPOSE, "slow"), _request(TaskKind.PROPOSE, "fast2")])

        self.assertEqual([result.token.owner_id for result in results], ["fast1", "slow", "fast2"])
        self.assertEqual(results[0].decision.text, "hello from fast1")
        self.assertIs(results[1].failure.kind, FailureKind.TIMEOUT)
        self.assertEqual(results[2].decision.text, "hello from fast2")
        self.assertEqual(client.stats["failed_timeout"], 1)


if __name__ == "__main__":
    unittest.main()
