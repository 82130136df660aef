from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from longwalk.config import AgentClientConfig
from longwalk.errors import (
    FailureKind,
    ServiceError,
    ServiceFailure,
    ServiceTimeout,
    ServiceUnavailable,
)
from longwalk.llm.client import LLMClient


LOGGER = logging.getLogger("longwalk.llm.agent_client")


class TaskKind(str, Enum):
    PROPOSE = "propose"
    ACCEPT = "accept"
    DIALOGUE_TURN = "dialogue_turn"
    CRISIS_RESPONSE = "crisis_response"


class _Decision(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProposalLine(_Decision):
    text: str = Field(min_length=1, max_length=280)

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value.strip()


class AcceptDecision(_Decision):
    accept: bool
    reason: str | None = Field(default=None, max_length=200)
    text: str | None = Field(default=None, max_length=280)


class DialogueTurnDecision(_Decision):
    utterance: str = Field(min_length=1, max_length=400)
    end_conversation: bool = False
    sentiment: float | None = Field(default=None, ge=-1.0, le=1.0)

    @field_validator("utterance")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("utterance must not be blank")
        return value.strip()


class CrisisResponseDecision(_Decision):
    respond: bool
    action: str | None = Field(default=None, max_length=200)
    sentiment: float | None = Field(default=None, ge=-1.0, le=1.0)


DECISION_MODELS: dict[TaskKind, type[_Decision]] = {
    TaskKind.PROPOSE: ProposalLine,
    TaskKind.ACCEPT: AcceptDecision,
    TaskKind.DIALOGUE_TURN: DialogueTurnDecision,
    TaskKind.CRISIS_RESPONSE: CrisisResponseDecision,
}

SYSTEM_PROMPTS: dict[TaskKind, str] = {
    TaskKind.PROPOSE: (
        "You voice one walker on a long, exhausting march. The walker wants to start a conversation "
        "with the person beside them. Return JSON only: {\"text\": opening line, max 2 sentences}."
    ),
    TaskKind.ACCEPT: (
        "You voice one walker on a long march who was just approached by another walker. Decide "
        "whether to talk, in character. Return JSON only: {\"accept\": bool, \"reason\": short, "
        "\"text\": optional reply}."
    ),
    TaskKind.DIALOGUE_TURN: (
        "You voice one walker in an ongoing two-person conversation on a long march. Continue the "
        "conversation naturally, one short utterance, no narration. Return JSON only: "
        "{\"utterance\": str, \"end_conversation\": bool, \"sentiment\": number in [-1, 1]}."
    ),
    TaskKind.CRISIS_RESPONSE: (
        "You voice one walker during a crisis on the road. Decide whether to step in and help, in "
        "character. Return JSON only: {\"respond\": bool, \"action\": short description, "
        "\"sentiment\": number in [-1, 1]}."
    ),
}


@dataclass(frozen=True)
class CallToken:
    """Identifies the state a request was built against."""

    owner_kind: str
    owner_id: str
    version: int


@dataclass(frozen=True)
class ServiceRequest:
    token: CallToken
    task: TaskKind
    context: dict[str, Any]


@dataclass(frozen=True)
class CallResult:
    request: ServiceRequest
    decision: _Decision | None = None
    failure: ServiceFailure | None = None

    @property
    def ok(self) -> bool:
        return self.decision is not None

    @property
    def token(self) -> CallToken:
        return self.request.token


class ReasoningService(Protocol):
    enabled: bool

    def complete(self, task: TaskKind, context: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        ...


@dataclass
class OpenAIReasoningService:
    client: LLMClient

    @classmethod
    def from_env(cls) -> "OpenAIReasoningService":
        return cls(client=LLMClient.from_env())

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    def complete(self, task: TaskKind, context: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        return self.client.request_json_object(
            system_prompt=SYSTEM_PROMPTS[task],
            user_payload={"task": task.value, "context": context},
            json_schema=schema,
        )


class DisabledReasoningService:
    enabled = False

    def complete(self, task: TaskKind, context: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        raise ServiceUnavailable("reasoning service disabled")


class AgentClient:
    """Sends a batch of decision requests and returns one typed result per request.

    Results come back in request order. Calls that miss the deadline are
    cancelled and reported as timeouts; whatever they return later is ignored.
    """

    def __init__(self, service: ReasoningService, config: AgentClientConfig | None = None) -> None:
        self.service = service
        self.config = config or AgentClientConfig()
        self._executor: ThreadPoolExecutor | None = None
        self.stats: dict[str, int] = {"requests": 0, "ok": 0}

    @property
    def enabled(self) -> bool:
        return bool(getattr(self.service, "enabled", True))

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="longwalk-agent",
            )
        return self._executor

    def dispatch(self, requests: list[ServiceRequest]) -> list[CallResult]:
        if not requests:
            return []
        self.stats["requests"] += len(requests)
        if not self.enabled:
            failure = ServiceFailure(FailureKind.DISABLED, "reasoning service disabled")
            self._count(FailureKind.DISABLED, len(requests))
            return [CallResult(request=request, failure=failure) for request in requests]

        pool = self._pool()
        futures: list[Future[CallResult]] = [pool.submit(self._call, request) for request in requests]
        done, pending = wait(futures, timeout=self.config.timeout_sec)
        for future in pending:
            future.cancel()

        results: list[CallResult] = []
        for request, future in zip(requests, futures):
            if future in done:
                result = future.result()
            else:
                LOGGER.warning(
                    "Agent call timed out task=%s owner=%s:%s after %.2fs",
                    request.task.value,
                    request.token.owner_kind,
                    request.token.owner_id,
                    self.config.timeout_sec,
                )
                result = CallResult(
                    request=request,
                    failure=ServiceFailure(FailureKind.TIMEOUT, f"no answer within {self.config.timeout_sec}s"),
                )
            if result.ok:
                self.stats["ok"] += 1
            else:
                self._count(result.failure.kind, 1)
            results.append(result)
        return results

    def _call(self, request: ServiceRequest) -> CallResult:
        model = DECISION_MODELS[request.task]
        try:
            raw = self.service.complete(request.task, request.context, model.model_json_schema())
        except ServiceTimeout as exc:
            return self._failed(request, FailureKind.TIMEOUT, str(exc))
        except ServiceUnavailable as exc:
            return self._failed(request, FailureKind.DISABLED, str(exc))
        except ServiceError as exc:
            return self._failed(request, FailureKind.ERROR, str(exc))
        except Exception as exc:
            LOGGER.exception("Reasoning service raised unexpectedly task=%s", request.task.value)
            return self._failed(request, FailureKind.ERROR, f"{type(exc).__name__}: {exc}")

        try:
            decision = model.model_validate(raw)
        except ValidationError as exc:
            LOGGER.debug("Decision validation failed task=%s errors=%s", request.task.value, exc.errors())
            return self._failed(request, FailureKind.INVALID, str(exc))
        return CallResult(request=request, decision=decision)

    def _failed(self, request: ServiceRequest, kind: FailureKind, detail: str) -> CallResult:
        LOGGER.debug("Agent call failed task=%s kind=%s detail=%s", request.task.value, kind.value, detail[:200])
        return CallResult(request=request, failure=ServiceFailure(kind, detail))

    def _count(self, kind: FailureKind, amount: int) -> None:
        key = f"failed_{kind.value}"
        self.stats[key] = self.stats.get(key, 0) + amount

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
