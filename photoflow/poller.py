import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Thread
from typing import Union

import inotify.adapters
import inotify.constants

from photoflow.classes import ProcessingResult, StagedFile
from photoflow.constants import Constants
from photoflow.exceptions import PipelineError, TransientStorageError
from photoflow.lifecycle import LifecycleManager
from photoflow.utils.filename import FilenameUtils


class IntakePoller:
    """
    Scans the incoming directory every `poll_interval` seconds and hands each
    allowed file to the lifecycle manager. Files are claimed on the polling
    thread before they're queued, so a file never gets dispatched twice.
    """

    _lifecycle: LifecycleManager
    _poll_interval: float
    _max_workers: int
    _enable_inotify: bool
    _logger: logging.Logger

    _executor: Union[ThreadPoolExecutor, None] = None
    _poll_thread: Union[Thread, None] = None
    _inotify_thread: Union[Thread, None] = None

    def __init__(
        self,
        *,
        lifecycle: LifecycleManager,
        poll_interval: float = Constants.POLL_INTERVAL_SECONDS,
        max_workers: int = Constants.MAX_WORKERS,
        enable_inotify: bool = False,
    ):
        if poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {poll_interval}")

        self._lifecycle = lifecycle
        self._poll_interval = poll_interval
        self._max_workers = max_workers
        self._enable_inotify = enable_inotify
        self._logger = logging.getLogger(__name__)

        self._stop_event = Event()
        self._wakeup_event = Event()

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="photoflow-worker"
        )
        self._logger.info(
            f"Created processing threadpool with {max_workers} workers, polling "
            f"'{lifecycle.incoming_dir}' every {poll_interval}s"
        )

    def start(self):
        for staged in self._lifecycle.recover_claimed():
            self._submit(staged)

        self._logger.info("Dispatching poller thread")
        self._poll_thread = Thread(
            target=self._poll_loop, name="photoflow-poller", daemon=True
        )
        self._poll_thread.start()

        if self._enable_inotify:
            self._dispatch_inotify_thread()

    def stop(self, wait: bool = True):
        self._logger.info("Stopping poller")
        self._stop_event.set()
        self._wakeup_event.set()

        if self._poll_thread is not None and wait:
            self._poll_thread.join()

        self._executor.shutdown(wait=wait)
        self._lifecycle.shutdown(wait=wait)

    def is_running(self) -> bool:
        return self._poll_thread is not None and self._poll_thread.is_alive()

    def poll_once(self) -> list[Future]:
        """One scan of the incoming directory. Returns the dispatched jobs."""
        incoming_dir = self._lifecycle.incoming_dir
        try:
            filenames = sorted(os.listdir(incoming_dir))
        except OSError:
            self._logger.exception(
                f"Cannot read incoming directory '{incoming_dir}', retrying next cycle"
            )
            return []

        futures = []
        for filename in filenames:
            if not FilenameUtils.has_allowed_extension(
                filename, self._lifecycle.allowed_extensions
            ):
                self._logger.debug(
                    f"Ignoring file '{filename}' because it doesn't have an allowed file extension"
                )
                continue

            if not os.path.isfile(os.path.join(incoming_dir, filename)):
                continue

            try:
                staged = self._lifecycle.claim(filename)
            except TransientStorageError:
                self._logger.exception(f"Failed to claim '{filename}', retrying next cycle")
                continue
            except PipelineError as e:
                self._lifecycle.reject(filename, e)
                continue

            if staged is None:
                continue

            self._logger.info(f"Received file for processing: {filename}")
            futures.append(self._submit(staged))

        return futures

    def _submit(self, staged: StagedFile) -> Future:
        return self._executor.submit(self._process, staged)

    def _process(self, staged: StagedFile) -> Union[ProcessingResult, None]:
        try:
            return self._lifecycle.process(staged)
        except Exception:
            # process() turns pipeline errors into failure results, this is a bug
            self._logger.exception(f"Error processing photo '{staged.original_filename}'")
            return None

    def _poll_loop(self):
        logger = logging.getLogger(f"{__name__}.poller-thread")
        logger.info(f"Polling '{self._lifecycle.incoming_dir}'")

        while not self._stop_event.is_set():
            try:
                futures = self.poll_once()
                if futures:
                    logger.debug(f"Dispatched {len(futures)} file(s)")
            except Exception:
                logger.exception("Unexpected error while polling")

            self._wakeup_event.wait(self._poll_interval)
            self._wakeup_event.clear()

        logger.info("Poller thread stopped")

    def _dispatch_inotify_thread(self):
        self._logger.info("Dispatching inotify thread")

        self._inotify_thread = Thread(
            target=self._watch_fs_events, name="photoflow-inotify", daemon=True
        )
        self._inotify_thread.start()

    def _watch_fs_events(self):
        logger = logging.getLogger(f"{__name__}.inotify-thread")
        try:
            i = inotify.adapters.Inotify()

            i.add_watch(
                self._lifecycle.incoming_dir,
                mask=inotify.constants.IN_CLOSE_WRITE | inotify.constants.IN_MOVED_TO,
            )
            logger.info(f"Added watch for folder '{self._lifecycle.incoming_dir}'")

            for event in i.event_gen(yield_nones=True, timeout_s=1):
                if self._stop_event.is_set():
                    break
                if event is None:
                    continue

                (_, _, _, filename) = event
                logger.debug(event)

                if FilenameUtils.has_allowed_extension(
                    filename, self._lifecycle.allowed_extensions
                ):
                    logger.info(f"Detected new file '{filename}', polling early")
                    self._wakeup_event.set()

        except (KeyboardInterrupt, InterruptedError) as e:
            logger.info(f"{type(e).__name__} received. Stopping thread.")
        except OSError:
            logger.exception("inotify watch failed, falling back to interval polling")
