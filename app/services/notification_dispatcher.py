"""
services/notification_dispatcher.py
-----------------------------------
Background hand-off for lifecycle notifications.

Workflows call dispatch() after their state change has been persisted. A
single worker task renders and sends each job; any failure is logged with
the job's context and dropped, so a notification problem can never fail or
delay the operation that triggered it.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from app.core.logging import get_logger
from app.services.email_service import NotificationGateway
from app.services.email_templates import TemplateRegistry

logger = get_logger(__name__)


@dataclass
class NotificationJob:
    template_name: str
    to: str
    data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:

    def __init__(self, gateway: NotificationGateway, templates: TemplateRegistry) -> None:
        self._gateway = gateway
        self._templates = templates
        self._queue: "asyncio.Queue[NotificationJob]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
            logger.info("Notification dispatcher started")

    def dispatch(
        self,
        template_name: str,
        to: str,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Queue a notification. Never raises and never waits for delivery."""
        job = NotificationJob(template_name, to, dict(data), dict(metadata or {}))
        self._queue.put_nowait(job)
        logger.debug("Notification queued", template=template_name, to=to)

    async def drain(self) -> None:
        """Wait until every queued notification has been processed."""
        if self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        await self.drain()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Notification dispatcher stopped")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._deliver(job)
            finally:
                self._queue.task_done()

    async def _deliver(self, job: NotificationJob) -> None:
        try:
            rendered = self._templates.render(job.template_name, job.data)
            result = await self._gateway.send(
                to=job.to,
                subject=rendered.subject,
                html=rendered.html,
                template_name=rendered.template_name,
                metadata=job.metadata,
            )
        except Exception as exc:
            logger.error(
                "Notification failed",
                template=job.template_name,
                to=job.to,
                error=str(exc),
                exc_info=True,
            )
            return

        if not result.success:
            logger.warning(
                "Notification not delivered",
                template=job.template_name,
                to=job.to,
                reason=result.reason,
                error=result.error,
            )
