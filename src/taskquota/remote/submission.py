"""Submit a task remotely and record the completion only once it is accepted."""

from __future__ import annotations

import logging

from taskquota.errors import RemoteError, StorageError, ValidationError
from taskquota.remote.task_api import TaskApiClient
from taskquota.tracking.event_bus import SUBMISSION_FAILED, EventBus
from taskquota.tracking.recorder import CompletionRecorder

logger = logging.getLogger(__name__)


class TaskSubmitter:
    """Glue between the remote submit call and :class:`CompletionRecorder`."""

    def __init__(
        self,
        api: TaskApiClient,
        recorder: CompletionRecorder,
        event_bus: EventBus | None = None,
    ) -> None:
        self._api = api
        self._recorder = recorder
        self._event_bus = event_bus

    async def current_user_id(self) -> int | None:
        """Resolve the authenticated user from the profile endpoint."""
        return await self._api.get_current_user_id()

    async def submit(
        self,
        task_id: int,
        screenshot_url: str,
        user_id: int | None = None,
    ) -> dict:
        """Submit *screenshot_url* for *task_id*.

        The completion is recorded locally only after the server accepts the
        submission.  When *user_id* is not given it is looked up from the
        profile endpoint; if it cannot be resolved nothing is recorded.

        Raises
        ------
        ValidationError
            On missing input, before anything is sent.
        RemoteError
            If the server rejects the submission.  The log is left untouched.
        """
        if not task_id:
            raise ValidationError("task_id is required")
        if not screenshot_url:
            raise ValidationError("screenshot_url is required")

        try:
            result = await self._api.submit_task(task_id, screenshot_url)
        except RemoteError as exc:
            logger.error("Task submission error for task %s: %s", task_id, exc)
            if self._event_bus is not None:
                await self._event_bus.emit(SUBMISSION_FAILED, {
                    "task_id": task_id, "error": str(exc),
                })
            raise

        if user_id is None:
            user_id = await self.current_user_id()
        if not user_id:
            logger.warning(
                "Task %s accepted but user is unknown; completion not recorded", task_id,
            )
            return result

        try:
            await self._recorder.record(task_id, user_id)
        except (StorageError, ValidationError):
            # Already accepted remotely; the local log is advisory only.
            logger.exception(
                "Error recording task completion for task %s user %s", task_id, user_id,
            )
        return result
