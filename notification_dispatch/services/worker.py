from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from notification_dispatch.config import Settings
from notification_dispatch.core.logging import logger
from notification_dispatch.providers.email import EmailProvider
from notification_dispatch.services.dispatch import send_next
from notification_dispatch.services.recovery import drop_expired, recover_stuck


@dataclass(frozen=True)
class WorkerConfig:
    enabled: bool = True
    batch_size: int = 10
    interval_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerConfig":
        return cls(
            enabled=settings.NOTIF_WORKER_ENABLED,
            batch_size=max(1, settings.NOTIF_WORKER_BATCH_SIZE),
            interval_ms=max(1, settings.NOTIF_WORKER_INTERVAL_MS),
        )

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0


class NotificationWorker:
    """Pulls a bounded batch of notifications through claim and delivery per tick.

    One instance per process. The ``running`` flag keeps a slow tick from
    overlapping the next one in this process; other processes are kept apart
    by the claim statement itself.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession], provider: EmailProvider, config: WorkerConfig):
        self._session_factory = session_factory
        self._provider = provider
        self.config = config
        self.running = False

    async def tick(self) -> int:
        """Process up to ``batch_size`` notifications. Returns how many were attempted."""
        if not self.config.enabled or self.running:
            return 0

        self.running = True
        processed = 0
        try:
            for _ in range(self.config.batch_size):
                async with self._session_factory() as db:
                    outcome = await send_next(db, self._provider)
                if outcome is None:
                    break
                processed += 1
        except Exception as e:
            # Claimed rows stay SENDING and come back through recover_stuck
            logger.exception("Notification worker tick failed", error=str(e), processed=processed)
        finally:
            self.running = False

        if processed:
            logger.debug("Notification worker tick finished", processed=processed)
        return processed

    async def sweep(self) -> dict:
        """Run the recovery and expiry sweeps once."""
        try:
            async with self._session_factory() as db:
                recovered = await recover_stuck(db)
                dropped = await drop_expired(db)
        except Exception as e:
            logger.exception("Notification recovery sweep failed", error=str(e))
            return {"recovered": 0, "dropped": 0}
        return {"recovered": recovered, "dropped": dropped}
