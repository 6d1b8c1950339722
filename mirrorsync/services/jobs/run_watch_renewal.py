"""
CLI Entry Point for the Watch Renewal Sweep
Called by cron every hour; channels are renewed well before they expire

    python -m mirrorsync.services.jobs.run_watch_renewal           # enqueue for the worker
    python -m mirrorsync.services.jobs.run_watch_renewal --inline  # run in this process
"""
import sys
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main(argv=None):
    """
    Kick the renewal sweep.
    Called by cron: 0 * * * * (hourly)
    """
    from mirrorsync.core.config import settings
    from mirrorsync.services.jobs.tasks import renew_watches_task

    argv = sys.argv[1:] if argv is None else argv
    inline = "--inline" in argv or not settings.redis_url

    logger.info(f"⏰ Watch renewal cron job started ({'inline' if inline else 'enqueue'})")

    try:
        if inline:
            result = renew_watches_task()
            logger.info(f"✅ Watch renewal finished: {result}")
        else:
            message = renew_watches_task.send()
            logger.info(f"✅ Watch renewal enqueued: {message.message_id}")
        sys.exit(0)

    except Exception as e:
        logger.error(f"❌ Watch renewal cron job failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
