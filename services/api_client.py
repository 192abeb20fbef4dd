"""HTTP client that replays queued actions against the progress API."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import httpx

from core.action_kinds import resolve_endpoint
from core.settings import SYNC
from services.pending_actions_queue import PendingAction
from services.sync_errors import TerminalSyncFailure, TransientSyncFailure


IDEMPOTENCY_HEADER = "Idempotency-Key"
CLIENT_ID_HEADER = "X-Client-Id"

# 4xx answers that say "try again later" rather than "this request is wrong".
RETRYABLE_CLIENT_STATUS = {408, 425, 429}


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error"):
            if data.get(key):
                return f"HTTP {response.status_code}: {data[key]}"
    text = response.text.strip()
    if text:
        return f"HTTP {response.status_code}: {text[:200]}"
    return f"HTTP {response.status_code}"


def classify_response(response: httpx.Response) -> None:
    """Raise the matching :class:`SyncFailure` for a non-2xx response."""

    code = response.status_code
    if 200 <= code < 300:
        return
    message = _error_message(response)
    if code in RETRYABLE_CLIENT_STATUS or code >= 500:
        raise TransientSyncFailure(message, status_code=code)
    if 400 <= code < 500:
        raise TerminalSyncFailure(message, status_code=code)
    # 1xx/3xx leaking through means a misconfigured base URL; retry later.
    raise TransientSyncFailure(message, status_code=code)


class RemoteApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
        client_id: Optional[str] = None,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = (base_url or SYNC.api_base_url).rstrip("/")
        self.client_id = client_id
        self._owns_http = http is None
        self.http = http or httpx.Client(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else SYNC.request_timeout_sec,
            headers=dict(headers or {}),
        )

    def build_request(self, action: PendingAction) -> httpx.Request:
        """Turn a queued action into a request.

        An action that can never become a valid request raises
        :class:`TerminalSyncFailure`, so it cannot hold up the rest of the queue.
        """

        try:
            method, path, body = resolve_endpoint(action.kind, action.payload)
        except KeyError as exc:
            raise TerminalSyncFailure(
                f"Payload for {action.kind} is missing path parameter {exc.args[0]!r}"
            ) from exc

        body = dict(body)
        body["idempotencyKey"] = action.idempotency_key
        headers = {
            "Content-Type": "application/json",
            IDEMPOTENCY_HEADER: action.idempotency_key,
        }
        if self.client_id:
            headers[CLIENT_ID_HEADER] = self.client_id
        try:
            # NaN and Infinity have no JSON spelling the server would accept.
            content = json.dumps(body, ensure_ascii=False, allow_nan=False).encode("utf-8")
            return self.http.build_request(method, path, content=content, headers=headers)
        except (ValueError, TypeError, httpx.InvalidURL) as exc:
            raise TerminalSyncFailure(f"Cannot build request for {action.kind}: {exc}") from exc

    def send(self, action: PendingAction) -> Optional[Dict[str, Any]]:
        """Transmit one action; return the decoded JSON body on success."""

        request = self.build_request(action)
        try:
            response = self.http.send(request)
        except httpx.TimeoutException as exc:
            raise TransientSyncFailure(f"Timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientSyncFailure(f"Network error: {exc}") from exc

        classify_response(response)
        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else {"data": data}

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "RemoteApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "CLIENT_ID_HEADER",
    "IDEMPOTENCY_HEADER",
    "RemoteApiClient",
    "classify_response",
]
