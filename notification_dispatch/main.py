from fastapi import FastAPI
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi_limiter import FastAPILimiter
from redis.asyncio import Redis

from notification_dispatch.config import settings
from notification_dispatch.core.logging import configure_logging, logger
from notification_dispatch.database import AsyncSessionLocal, engine
from notification_dispatch.providers.email import get_email_provider
from notification_dispatch.routers import notifications
from notification_dispatch.services.worker import NotificationWorker, WorkerConfig

# Configure logging
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

# Scheduler setup
scheduler = AsyncIOScheduler()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Notification Dispatch Service starting up...")

    # Initialize FastAPI-Limiter
    redis = Redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT, db=0)
    await FastAPILimiter.init(redis)
    logger.info("FastAPI-Limiter initialized.")

    provider = get_email_provider(settings)
    worker_config = WorkerConfig.from_settings(settings)
    worker = NotificationWorker(AsyncSessionLocal, provider, worker_config)
    app.state.worker = worker

    if worker_config.enabled:
        scheduler.add_job(
            worker.tick,
            IntervalTrigger(seconds=worker_config.interval_seconds),
            id="notification_worker_tick",
            name="Dispatch Notifications",
            max_instances=1,
            coalesce=True,
        )
    else:
        logger.warning("Notification worker disabled by configuration")
    scheduler.add_job(
        worker.sweep,
        IntervalTrigger(seconds=settings.NOTIF_RECOVERY_INTERVAL_SECONDS),
        id="notification_recovery_sweep",
        name="Recover Stuck Notifications",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60 # seconds
    )
    scheduler.start()
    logger.info(
        "Scheduler started.",
        provider=provider.name,
        worker_enabled=worker_config.enabled,
        batch_size=worker_config.batch_size,
        interval_ms=worker_config.interval_ms,
    )

    yield

    logger.info("Notification Dispatch Service shutting down...")
    # Shut down scheduler
    scheduler.shutdown()
    logger.info("Scheduler shut down.")

    await provider.close()

    # Close FastAPI-Limiter
    await FastAPILimiter.close()
    logger.info("FastAPI-Limiter closed.")

    await engine.dispose()

app = FastAPI(lifespan=lifespan, title="Notification Dispatch Service", version="1.0.0")

app.include_router(notifications.router)

@app.get("/health")
async def health_check():
    return {"status": "ok"}
