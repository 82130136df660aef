from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from json import JSONDecodeError, JSONDecoder
from typing import Any

from openai import APITimeoutError, OpenAI, OpenAIError

from longwalk.errors import ServiceError, ServiceTimeout, ServiceUnavailable


def _is_enabled(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class LLMClient:
    enabled: bool
    base_url: str
    model: str
    api_key: str | None
    timeout_sec: float = 20.0
    max_output_tokens: int = 300
    max_retries: int = 0
    temperature: float = 0.7
    debug: bool = False
    _sdk_client: OpenAI | None = None
    _json_schema_supported: bool = True

    @classmethod
    def from_env(cls) -> "LLMClient":
        enabled = _is_enabled(os.getenv("LLM_ENABLED", "0"))
        base_url = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").strip()
        model = os.getenv("LLM_MODEL", "").strip()
        api_key = os.getenv("LLM_API_KEY", "").strip() or None

        try:
            timeout_sec = float(os.getenv("LLM_TIMEOUT_SEC", "20"))
        except ValueError:
            timeout_sec = 20.0
        timeout_sec = max(1.0, min(timeout_sec, 180.0))

        try:
            max_output_tokens = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "300"))
        except ValueError:
            max_output_tokens = 300
        max_output_tokens = max(64, min(max_output_tokens, 4000))

        try:
            max_retries = int(os.getenv("LLM_MAX_RETRIES", "0"))
        except ValueError:
            max_retries = 0
        max_retries = max(0, min(max_retries, 5))

        try:
            temperature = float(os.getenv("LLM_TEMPERATURE", "0.7"))
        except ValueError:
            temperature = 0.7
        temperature = max(0.0, min(temperature, 1.5))

        return cls(
            enabled=enabled and bool(base_url) and bool(model) and bool(api_key),
            base_url=base_url.rstrip("/"),
            model=model,
            api_key=api_key,
            timeout_sec=timeout_sec,
            max_output_tokens=max_output_tokens,
            max_retries=max_retries,
            temperature=temperature,
            debug=_is_enabled(os.getenv("LLM_DEBUG", "0")),
        )

    def request_json_object(
        self,
        *,
        system_prompt: str,
        user_payload: dict[str, Any],
        json_schema: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.enabled:
            raise ServiceUnavailable("reasoning service is not configured")

        effective_schema: dict[str, Any] | None = None
        if json_schema is not None and self._json_schema_supported:
            effective_schema = self._provider_compatible_schema(json_schema)

        response_obj = self._chat_completions_create(
            system_prompt=system_prompt,
            user_payload=user_payload,
            json_schema=effective_schema,
        )
        if response_obj is None and effective_schema is not None:
            self._debug("LLM chat.completions fallback: retry with json_object format")
            response_obj = self._chat_completions_create(
                system_prompt=system_prompt,
                user_payload=user_payload,
                json_schema=None,
            )
        if response_obj is None:
            raise ServiceError("no response from reasoning service")

        content = self._extract_message_content(response_obj)
        if not content:
            raise ServiceError("reasoning service response has no text content")

        parsed = self._extract_json_object(content)
        if parsed is None:
            self._debug(f"LLM returned non-JSON text prefix: {content[:280]!r}")
            raise ServiceError("reasoning service returned non-JSON content")
        return parsed

    def _get_sdk_client(self) -> OpenAI:
        if self._sdk_client is None:
            self._sdk_client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout_sec,
                max_retries=self.max_retries,
            )
        return self._sdk_client

    def _chat_completions_create(
        self,
        *,
        system_prompt: str,
        user_payload: dict[str, Any],
        json_schema: dict[str, Any] | None = None,
    ) -> Any | None:
        response_format: dict[str, Any] = {"type": "json_object"}
        if json_schema:
            response_format = {
                "type": "json_schema",
                "json_schema": {
                    "name": "walker_decision",
                    "strict": True,
                    "schema": json_schema,
                },
            }

        try:
            response = self._get_sdk_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": json.dumps(user_payload, ensure_ascii=False)},
                ],
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
                response_format=response_format,
            )
        except APITimeoutError as exc:
            raise ServiceTimeout(f"reasoning service timed out after {self.timeout_sec}s") from exc
        except OpenAIError as exc:
            if json_schema is not None and self._is_response_format_schema_error(exc):
                self._json_schema_supported = False
                self._debug("LLM provider rejected json_schema; disabled for next requests")
                return None
            self._debug(f"LLM chat.completions error type={type(exc).__name__} detail={exc!r}")
            raise ServiceError(f"{type(exc).__name__}: {exc}") from exc

        if self.debug:
            try:
                as_dict = response.model_dump()
            except Exception:
                as_dict = {"response_repr": repr(response)}
            self._debug(f"LLM chat.completions response prefix={json.dumps(as_dict, ensure_ascii=False)[:280]!r}")
        return response

    def _debug(self, message: str) -> None:
        if self.debug:
            logging.getLogger("longwalk.llm.client").warning(message)

    def _extract_message_content(self, response_obj: Any) -> str | None:
        choices = getattr(response_obj, "choices", None)
        if choices is None and isinstance(response_obj, dict):
            choices = response_obj.get("choices")
        if not choices:
            return None

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else getattr(first, "message", None)
        if message is None:
            return None
        content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)

        if isinstance(content, str):
            trimmed = content.strip()
            return trimmed if trimmed else None

        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if not isinstance(item, dict):
                    continue
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
            merged = "".join(parts).strip()
            return merged if merged else None

        return None

    def _extract_json_object(self, content: str) -> dict[str, Any] | None:
        normalized = content.strip()
        if not normalized:
            return None

        if normalized.startswith("```"):
            lines = [line for line in normalized.splitlines() if not line.strip().startswith("```")]
            normalized = "\n".join(lines).strip()

        try:
            parsed = json.loads(normalized)
            if isinstance(parsed, dict):
                return parsed
        except JSONDecodeError:
            pass

        start = normalized.find("{")
        if start < 0:
            return None
        decoder = JSONDecoder()
        try:
            parsed, _idx = decoder.raw_decode(normalized[start:])
        except JSONDecodeError as exc:
            self._debug(
                "JSON decode failed "
                f"msg={exc.msg!r} pos={exc.pos} len={len(normalized)} prefix={normalized[:180]!r}"
            )
            return None
        return parsed if isinstance(parsed, dict) else None

    def _is_response_format_schema_error(self, exc: Exception) -> bool:
        msg = str(exc).lower()
        if "response_format" not in msg:
            return False
        return ("invalid schema" in msg) or ("json_schema" in msg)

    def _provider_compatible_schema(self, schema: dict[str, Any]) -> dict[str, Any]:
        return self._normalize_schema_node(schema)

    def _normalize_schema_node(self, node: Any) -> Any:
        if isinstance(node, list):
            return [self._normalize_schema_node(item) for item in node]
        if not isinstance(node, dict):
            return node

        normalized: dict[str, Any] = {}
        for key, value in node.items():
            if key == "default":
                continue
            normalized[key] = self._normalize_schema_node(value)

        node_type = normalized.get("type")
        props = normalized.get("properties")
        if node_type == "object" and isinstance(props, dict):
            normalized["required"] = list(props.keys())
            normalized.setdefault("additionalProperties", False)
        return normalized
