"""HTTP client for the remote task API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from taskquota.errors import RemoteError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def resolve_message(body: Any, exc: Exception | None, fallback: str) -> str:
    """Pick the message shown for a failed remote call.

    Preference order: the server-supplied ``message``, the error's own
    text, then *fallback*.
    """
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    if exc is not None and str(exc).strip():
        return str(exc)
    return fallback


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class TaskApiClient:
    """Thin async wrapper over ``GET /tasks``, ``POST /tasks/{id}/submit``
    and ``GET /users/profile``.

    Responses use the envelope ``{"success": bool, "data": ..., "message": str}``.
    Failures are raised as :class:`RemoteError` and never retried.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://example.com/api``.
    token:
        Optional bearer token; without one :meth:`get_current_user_id`
        returns ``None``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> TaskApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, fallback: str, **kwargs) -> Any:
        """Send a request and return the envelope's ``data`` payload."""
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise RemoteError(resolve_message(None, exc, fallback)) from exc

        body = _json_or_none(resp)
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("%s %s returned %d", method, path, resp.status_code)
            raise RemoteError(
                resolve_message(body, exc, fallback), status_code=resp.status_code,
            ) from exc

        if not isinstance(body, dict) or not body.get("success") or body.get("data") is None:
            logger.error("Invalid response from %s %s: %r", method, path, body)
            raise RemoteError(
                resolve_message(body, ValueError("Invalid response format"), fallback),
                status_code=resp.status_code,
            )
        return body["data"]

    async def get_tasks(self) -> list[dict]:
        """Fetch the task list."""
        return await self._request("GET", "/tasks", "Failed to fetch tasks")

    async def submit_task(self, task_id: int, screenshot_url: str) -> dict:
        """Submit proof for *task_id*; returns ``{"submission", "transaction"}``.

        Raises
        ------
        RemoteError
            If the server rejects the submission or cannot be reached.
        """
        if not task_id:
            raise ValidationError("task_id is required")
        if not screenshot_url:
            raise ValidationError("screenshot_url is required")
        logger.info("Submitting task %s", task_id)
        return await self._request(
            "POST",
            f"/tasks/{task_id}/submit",
            "Failed to submit task",
            json={"screenshot_url": screenshot_url},
        )

    async def get_current_user_id(self) -> int | None:
        """Return the authenticated user's id, or ``None`` if unknown."""
        if not self.token:
            return None
        try:
            data = await self._request("GET", "/users/profile", "Failed to fetch profile")
        except RemoteError as exc:
            logger.warning("Could not resolve current user: %s", exc)
            return None
        user_id = data.get("id") if isinstance(data, dict) else None
        return user_id or None
