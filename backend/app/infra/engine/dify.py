from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from typing import Any

import httpx

from app.infra.ports.engine import (
    EngineHTTPError,
    EngineTimeoutError,
    EngineUnavailableError,
    StreamTransportError,
    WorkflowEnginePort,
)

logger = logging.getLogger(__name__)

_BLOCKING_ENDPOINTS = {
    "chat": "/chat-messages",
    "completion": "/completion-messages",
    "workflow": "/workflows/run",
}

# Mid-stream failures after which the workflow may well have finished upstream.
_RECOVERABLE_STREAM_ERRORS = (httpx.ReadError, httpx.RemoteProtocolError)


def _response_detail(response: httpx.Response) -> str:
    try:
        return response.text[:2000]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except (httpx.ResponseNotRead, ValueError):
        return None
    code = body.get("code") if isinstance(body, dict) else None
    return code if isinstance(code, str) else None


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise EngineHTTPError(response.status_code, _response_detail(response), code=_error_code(response))



class DifyEngine(WorkflowEnginePort):
    provider_name = "dify"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: int = 7200,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(3, int(timeout_seconds))
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.timeout_seconds, connect=30.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _build_payload(*, mode: str, payload: dict[str, Any], user: str, response_mode: str) -> dict[str, Any]:
        if mode == "chat":
            body: dict[str, Any] = {
                "query": payload.get("query", ""),
                "inputs": payload.get("inputs") or {},
                "user": user,
                "response_mode": response_mode,
            }
            if payload.get("conversationId"):
                body["conversation_id"] = payload["conversationId"]
            return body
        if mode == "completion":
            inputs = payload.get("inputs") or {"query": payload.get("query", "")}
            return {"inputs": inputs, "user": user, "response_mode": response_mode}
        return {"inputs": payload.get("inputs") or {}, "user": user, "response_mode": response_mode}

    def _request_json(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        started = time.monotonic()
        try:
            response = self._client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as exc:
            raise EngineTimeoutError(f"Workflow engine timed out after {self.timeout_seconds}s") from exc
        except httpx.TransportError as exc:
            raise EngineUnavailableError(f"No response from workflow engine at {self.base_url}: {exc}") from exc

        _raise_for_status(response)

        logger.info(
            "%s %s answered %d in %.2fs",
            method,
            endpoint,
            response.status_code,
            time.monotonic() - started,
        )
        data = response.json()
        if not isinstance(data, dict):
            raise EngineHTTPError(response.status_code, "Response body is not a JSON object")
        return data

    def run_blocking(self, *, mode: str, payload: dict[str, Any], user: str) -> dict[str, Any]:
        endpoint = _BLOCKING_ENDPOINTS.get(mode)
        if endpoint is None:
            raise ValueError(f"Unsupported request mode: {mode}")

        body = self._build_payload(mode=mode, payload=payload, user=user, response_mode="blocking")
        logger.info("POST %s (mode=%s, user=%s, blocking)", endpoint, mode, user)
        return self._request_json("POST", endpoint, json=body)

    def list_conversations(self, *, user: str, limit: int = 20, last_id: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"user": user, "limit": limit}
        if last_id:
            params["last_id"] = last_id
        return self._request_json("GET", "/conversations", params=params)

    def list_messages(
        self,
        *,
        conversation_id: str,
        user: str,
        limit: int = 20,
        first_id: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"conversation_id": conversation_id, "user": user, "limit": limit}
        if first_id:
            params["first_id"] = first_id
        return self._request_json("GET", "/messages", params=params)

    def run_streaming(self, *, payload: dict[str, Any], user: str) -> Iterator[bytes]:
        body = self._build_payload(mode="workflow", payload=payload, user=user, response_mode="streaming")
        logger.info("POST /workflows/run (user=%s, streaming)", user)

        try:
            with self._client.stream("POST", "/workflows/run", json=body) as response:
                if response.status_code >= 400:
                    response.read()
                    _raise_for_status(response)

                try:
                    for chunk in response.iter_bytes():
                        yield chunk
                except _RECOVERABLE_STREAM_ERRORS as exc:
                    raise StreamTransportError(f"Stream interrupted: {exc}", recoverable=True) from exc
                except httpx.TimeoutException as exc:
                    raise EngineTimeoutError(f"Workflow stream stalled for {self.timeout_seconds}s") from exc
                except httpx.TransportError as exc:
                    raise StreamTransportError(f"Stream failed: {exc}", recoverable=False) from exc
        except httpx.TimeoutException as exc:
            raise EngineTimeoutError(f"Workflow engine timed out after {self.timeout_seconds}s") from exc
        except httpx.TransportError as exc:
            raise EngineUnavailableError(f"No response from workflow engine at {self.base_url}: {exc}") from exc
