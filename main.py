import logging
import os
import signal
import threading

from photoflow.catalog import SqlCatalogWriter
from photoflow.config import Settings
from photoflow.lifecycle import LifecycleManager
from photoflow.poller import IntakePoller
from photoflow.utils.logging_utils import LoggingUtils

version = os.getenv("APP_VERSION", "local-dev")


def main():
    settings = Settings.from_env()

    LoggingUtils.setup_logging_with_default_formatter(loglevel=settings.loglevel)
    logger = logging.getLogger("photoflow.main")
    logger.info(f"Starting photoflow intake {version}")

    if settings.connection_string.startswith("sqlite:///"):
        db_dir = os.path.dirname(settings.connection_string.removeprefix("sqlite:///"))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    catalog = SqlCatalogWriter(connection_string=settings.connection_string)
    lifecycle = LifecycleManager.from_settings(settings, catalog)
    poller = IntakePoller(
        lifecycle=lifecycle,
        poll_interval=settings.poll_interval,
        max_workers=settings.max_workers,
        enable_inotify=settings.enable_inotify,
    )

    stop = threading.Event()

    def handle_signal(signum, _frame):
        logger.info(f"{signal.Signals(signum).name} received, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    poller.start()
    logger.info(f"Catalog holds {catalog.get_total_photo_count()} photos")

    stop.wait()
    poller.stop(wait=True)
    logger.info("Stopped")


if __name__ == "__main__":
    main()
