import asyncio
import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import settings
from core.logger import setup_logging, logger
from db.session import AsyncSessionLocal, create_redis, close_redis
from services.expiry_monitor import sweep_expired_sessions

async def start_api():
    from api.main import app
    config = uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()

async def main():
    # Setup structured logging
    setup_logging()

    redis = create_redis()

    # Expired session sweep (sessions whose time ran out while nobody had them open)
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_expired_sessions,
        trigger="interval",
        seconds=settings.EXPIRY_SWEEP_SECONDS,
        args=[AsyncSessionLocal, redis],
        id=settings.EXPIRY_SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler started (Expired session sweep).", interval=settings.EXPIRY_SWEEP_SECONDS)

    logger.info("Starting Mock Test API...", env=settings.ENV, port=settings.API_PORT)
    try:
        await start_api()
    finally:
        scheduler.shutdown(wait=False)
        await close_redis(redis)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
