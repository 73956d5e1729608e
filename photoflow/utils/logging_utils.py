import logging
import sys
from typing import Union

DEFAULT_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)-8s %(name)s: %(message)s"

# libraries that get routed through our root handler instead of their own
LIBRARY_LOGGERS = ["sqlalchemy", "PIL", "inotify"]


class LoggingUtils:
    @staticmethod
    def setup_logging_with_default_formatter(
        loglevel: Union[int, str] = logging.INFO, stream=sys.stderr
    ) -> None:
        if isinstance(loglevel, str):
            loglevel = loglevel.upper()

        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(loglevel)

        for name in LIBRARY_LOGGERS:
            logging.getLogger(name).handlers = []
            logging.getLogger(name).propagate = True

        # inotify and PIL are chatty at debug level
        if root.getEffectiveLevel() <= logging.DEBUG:
            logging.getLogger("inotify").setLevel(logging.INFO)
            logging.getLogger("PIL").setLevel(logging.INFO)
