from __future__ import annotations

import asyncio
import os
import unittest

os.environ["TICK_LOOP_ENABLED"] = "0"
os.environ["LLM_ENABLED"] = "0"
os.environ["CRISIS_CHANCE_SCALE"] = "0"

from fastapi.testclient import TestClient  # noqa: E402

from longwalk import main  # noqa: E402


class ApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.client = TestClient(main.app)
        cls.client.__enter__()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.client.__exit__(None, None, None)

    def test_startup_creates_the_engine_lock(self) -> None:
        self.assertIsInstance(main.app.state.engine_lock, asyncio.Lock)

    def test_health_reports_tick_and_service(self) -> None:
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertFalse(body["reasoning_service"])
        self.assertEqual(body["tick"], main.engine.tick)

    def test_state_lists_the_roster(self) -> None:
        body = self.client.get("/api/state").json()
        self.assertEqual(len(body["agents"]), 8)
        self.assertIn("runtime", body)
        self.assertIn("counters", body)

    def test_advance_moves_the_clock(self) -> None:
        before = main.engine.tick
        response = self.client.post("/api/advance", json={"ticks": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tick"], before + 2)
        self.assertIsInstance(response.json()["entries"], list)

        self.assertEqual(self.client.post("/api/advance", json={"ticks": 0}).status_code, 422)

    def test_narrative_filters_by_known_agent(self) -> None:
        self.assertEqual(self.client.get("/api/narrative", params={"agent_id": "nobody"}).status_code, 404)
        response = self.client.get("/api/narrative", params={"agent_id": "w01", "limit": 5})
        self.assertEqual(response.status_code, 200)
        self.assertLessEqual(len(response.json()), 5)

    def test_narrative_since_sequence(self) -> None:
        self.client.post("/api/advance", json={"ticks": 1})
        seq = main.engine.state.narrative.next_seq
        self.assertEqual(self.client.get("/api/narrative", params={"since": seq}).json(), [])

    def test_route_and_agent_inspection(self) -> None:
        route = self.client.get("/api/route").json()
        self.assertEqual(len(route["nodes"]), 10)
        self.assertTrue(route["edges"])

        details = self.client.get("/api/agents/w03").json()
        self.assertEqual(details["name"], "Stebbins")
        self.assertIn("partners", details)
        self.assertEqual(self.client.get("/api/agents/nobody").status_code, 404)

        knowledge = self.client.get("/api/agents/w03/knowledge", params={"q": "road"})
        self.assertEqual(knowledge.status_code, 200)
        self.assertIsInstance(knowledge.json(), list)
        self.assertEqual(self.client.get("/api/agents/nobody/knowledge").status_code, 404)

    def test_match_control(self) -> None:
        self.assertEqual(self.client.post("/api/control/match", json={"a": "w01", "b": "ghost"}).status_code, 404)
        self.assertEqual(self.client.post("/api/control/match", json={"a": "w01", "b": "w01"}).status_code, 400)
        response = self.client.post("/api/control/match", json={"a": "w01", "b": "w02"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["accepted"])

    def test_crisis_control(self) -> None:
        self.assertEqual(self.client.post("/api/control/crisis", json={"kind": "meteor"}).status_code, 400)
        self.assertEqual(
            self.client.post("/api/control/crisis", json={"kind": "storm", "location": "mars"}).status_code,
            400,
        )
        response = self.client.post("/api/control/crisis", json={"kind": "storm", "location": "n03", "quota": 1})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["kind"], "storm")

    def test_retire_control(self) -> None:
        self.assertEqual(self.client.post("/api/control/retire", json={"agent_id": "ghost"}).status_code, 404)
        self.assertEqual(self.client.post("/api/control/retire", json={"agent_id": "w08"}).status_code, 200)
        self.client.post("/api/advance", json={"ticks": 1})

        agents = {agent["id"]: agent for agent in self.client.get("/api/state").json()["agents"]}
        self.assertEqual(agents["w08"]["activity"], "inactive")
        self.assertEqual(self.client.post("/api/control/retire", json={"agent_id": "w08"}).status_code, 400)

    def test_speed_control(self) -> None:
        self.assertEqual(self.client.post("/api/control/speed", json={"speed": 2.0}).json(), {"speed": 2.0})
        self.assertEqual(self.client.post("/api/control/speed", json={"speed": 50}).status_code, 422)

    def test_stream_sends_state_first(self) -> None:
        with self.client.websocket_connect("/ws/stream") as ws:
            message = ws.receive_json()
        self.assertEqual(message["type"], "state")
        self.assertIn("agents", message["payload"])


if __name__ == "__main__":
    unittest.main()
