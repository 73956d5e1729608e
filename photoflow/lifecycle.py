import errno
import logging
import os
import re
import shutil
import stat
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, TypeVar, Union

from photoflow.catalog import CatalogWriter
from photoflow.classes import (
    ProcessingFailure,
    ProcessingResult,
    ProcessingSuccess,
    StagedFile,
)
from photoflow.config import Settings
from photoflow.constants import Constants
from photoflow.exceptions import (
    PipelineError,
    ProcessingTimeoutError,
    TransientStorageError,
    UnsupportedExtensionError,
    ValidationError,
)
from photoflow.metadata import MetadataExtractor
from photoflow.thumbnails import ThumbnailGenerator
from photoflow.utils.filename import FilenameUtils
from photoflow.utils.image import ImageProcessor

T = TypeVar("T")

CLAIMED_NAME_PATTERN = re.compile(r"^[0-9a-f]{32}\.(.+)$")

# claim errors that retrying won't fix
PERMANENT_CLAIM_ERRNOS = (errno.ENAMETOOLONG, errno.EISDIR, errno.ENOTDIR)

# pipeline stages, in order
STAGE_CLAIM = "claim"
STAGE_VALIDATE = "validate"
STAGE_RESOLVE_OWNER = "resolve_owner"
STAGE_EXTRACT_METADATA = "extract_metadata"
STAGE_MOVE_TO_ORIGINAL = "move_to_original"
STAGE_GENERATE_THUMBNAILS = "generate_thumbnails"
STAGE_PERSIST = "persist"
STAGE_PERSISTED = "persisted"
STAGE_FAILED = "failed"


class LifecycleManager:
    """
    Moves a single upload through the pipeline:

        incoming -> claimed -> original + derivatives -> catalog row

    Anything that goes wrong on the way sends the file, from wherever it is at
    that moment, to the failed directory next to a '<name>.error.txt'
    diagnostic. A processed file always ends up in exactly one of those places.
    """

    _incoming_dir: str
    _claimed_dir: str
    _original_dir: str
    _failed_dir: str
    _allowed_extensions: list[str]
    _processing_timeout: Union[float, None]
    _logger: logging.Logger

    _catalog: CatalogWriter
    _metadata_extractor: MetadataExtractor
    _thumbnail_generator: ThumbnailGenerator
    _owner_resolver: Callable[[str], Union[int, None]]
    _image_executor: Union[ThreadPoolExecutor, None] = None

    def __init__(
        self,
        *,
        catalog: CatalogWriter,
        thumbnail_generator: ThumbnailGenerator,
        incoming_dir: str,
        claimed_dir: str,
        original_dir: str,
        failed_dir: str,
        metadata_extractor: Union[MetadataExtractor, None] = None,
        allowed_extensions: Union[list[str], None] = None,
        processing_timeout: Union[float, None] = None,
        max_image_workers: int = Constants.MAX_WORKERS,
        owner_resolver: Callable[[str], Union[int, None]] = FilenameUtils.parse_owner_id,
    ):
        self._logger = logging.getLogger(__name__)

        self._incoming_dir = os.path.abspath(incoming_dir)
        self._claimed_dir = os.path.abspath(claimed_dir)
        self._original_dir = os.path.abspath(original_dir)
        self._failed_dir = os.path.abspath(failed_dir)

        for directory in (
            self._incoming_dir,
            self._claimed_dir,
            self._original_dir,
            self._failed_dir,
        ):
            if not os.path.isdir(directory):
                os.makedirs(directory, exist_ok=True)
                self._logger.info(f"Created directory: {directory}")

        self._catalog = catalog
        self._thumbnail_generator = thumbnail_generator
        self._metadata_extractor = metadata_extractor or MetadataExtractor()
        self._allowed_extensions = list(
            allowed_extensions or Constants.ALLOWED_INPUT_FILE_EXTENSIONS
        )
        self._processing_timeout = processing_timeout or None
        self._owner_resolver = owner_resolver

        if self._processing_timeout:
            self._image_executor = ThreadPoolExecutor(
                max_workers=max_image_workers, thread_name_prefix="photoflow-image"
            )

        self._logger.info(
            f"Photo processing directories initialized: incoming='{self._incoming_dir}', "
            f"original='{self._original_dir}', failed='{self._failed_dir}'"
        )

    @classmethod
    def from_settings(cls, settings: Settings, catalog: CatalogWriter) -> "LifecycleManager":
        return cls(
            catalog=catalog,
            thumbnail_generator=ThumbnailGenerator(
                derivative_dir=settings.derivative_dir,
                sizes=settings.thumbnail_sizes,
                quality=settings.thumbnail_quality,
            ),
            incoming_dir=settings.incoming_dir,
            claimed_dir=settings.claimed_dir,
            original_dir=settings.original_dir,
            failed_dir=settings.failed_dir,
            allowed_extensions=settings.allowed_extensions,
            processing_timeout=settings.processing_timeout,
            max_image_workers=settings.max_workers,
        )

    @property
    def incoming_dir(self) -> str:
        return self._incoming_dir

    @property
    def original_dir(self) -> str:
        return self._original_dir

    @property
    def failed_dir(self) -> str:
        return self._failed_dir

    @property
    def allowed_extensions(self) -> list[str]:
        return list(self._allowed_extensions)

    @property
    def thumbnail_generator(self) -> ThumbnailGenerator:
        return self._thumbnail_generator

    def claim(self, filename: str) -> Union[StagedFile, None]:
        """
        Atomically takes a file out of the incoming directory. Returns None if
        someone else got to it first.
        """
        source = os.path.join(self._incoming_dir, filename)
        original_filename = os.path.basename(source)
        claimed_path = os.path.join(
            self._claimed_dir, FilenameUtils.get_claimed_filename(original_filename)
        )

        try:
            os.rename(source, claimed_path)
        except FileNotFoundError:
            self._logger.debug(f"'{original_filename}' is gone, already claimed elsewhere")
            return None
        except OSError as e:
            if e.errno in PERMANENT_CLAIM_ERRNOS:
                raise ValidationError(
                    f"Cannot claim '{original_filename}': {e}", stage=STAGE_CLAIM
                ) from e
            raise TransientStorageError(
                f"Cannot claim '{original_filename}': {e}", stage=STAGE_CLAIM
            ) from e

        self._logger.debug(f"Claimed '{original_filename}' as '{claimed_path}'")
        return StagedFile(original_filename=original_filename, current_path=claimed_path)

    def recover_claimed(self) -> list[StagedFile]:
        """Files a previous run claimed but never finished."""
        try:
            names = sorted(os.listdir(self._claimed_dir))
        except OSError:
            self._logger.exception(f"Cannot list claim directory '{self._claimed_dir}'")
            return []

        staged_files = []
        for name in names:
            path = os.path.join(self._claimed_dir, name)
            if not os.path.isfile(path) or name.endswith(".tmp"):
                continue

            match = CLAIMED_NAME_PATTERN.match(name)
            original_filename = match.group(1) if match else name
            self._logger.warning(f"Recovering interrupted upload '{original_filename}'")
            staged_files.append(
                StagedFile(original_filename=original_filename, current_path=path)
            )

        return staged_files

    def process_file(self, filename: str) -> Union[ProcessingResult, None]:
        try:
            staged = self.claim(filename)
        except PipelineError as e:
            return self.reject(filename, e)

        if staged is None:
            return None

        return self.process(staged)

    def reject(self, filename: str, error: PipelineError) -> ProcessingFailure:
        """Sends a file that couldn't be claimed straight from incoming to failed."""
        source = os.path.join(self._incoming_dir, filename)
        staged = StagedFile(
            original_filename=os.path.basename(source),
            current_path=source,
            stage=STAGE_CLAIM,
        )
        return self._fail(staged, error)

    def process(self, staged: StagedFile) -> ProcessingResult:
        self._logger.info(f"Processing photo: {staged.original_filename}")
        start = time.perf_counter()

        deadline = None
        if self._processing_timeout:
            deadline = time.monotonic() + self._processing_timeout
        cancel_event = threading.Event()

        try:
            self._validate(staged)

            staged.stage = STAGE_RESOLVE_OWNER
            staged.owner_id = self._resolve_owner(staged.original_filename)

            staged.stage = STAGE_EXTRACT_METADATA
            source = staged.current_path
            staged.metadata = self._run_bounded(
                lambda: self._metadata_extractor.extract(source),
                deadline=deadline,
                cancel_event=cancel_event,
            )

            self._move_to_original(staged)

            staged.stage = STAGE_GENERATE_THUMBNAILS
            original_path, stored_filename = staged.current_path, staged.stored_filename
            staged.derivative_paths = self._run_bounded(
                lambda: self._thumbnail_generator.generate(
                    original_path, stored_filename, cancel_event=cancel_event
                ),
                deadline=deadline,
                cancel_event=cancel_event,
            )
            staged.thumbnail_filename = os.path.basename(staged.derivative_paths[0])

            staged.stage = STAGE_PERSIST
            photo_id = self._catalog.create_photo(staged)
        except Exception as e:
            cancel_event.set()
            return self._fail(staged, PipelineError.wrap(e, stage=staged.stage))

        staged.stage = STAGE_PERSISTED
        self._logger.info(
            f"Photo processed successfully: id={photo_id}, filename='{staged.original_filename}', "
            f"stored as '{staged.stored_filename}' in {time.perf_counter() - start:.3f}s"
        )
        return ProcessingSuccess(
            photo_id=photo_id,
            stored_filename=staged.stored_filename,
            original_path=staged.current_path,
            derivative_paths=list(staged.derivative_paths),
        )

    def _validate(self, staged: StagedFile):
        staged.stage = STAGE_VALIDATE

        if not FilenameUtils.has_allowed_extension(
            staged.original_filename, self._allowed_extensions
        ):
            raise UnsupportedExtensionError(
                f"Unsupported file extension: {staged.original_filename}"
            )

        file_stat = os.stat(staged.current_path)
        if not stat.S_ISREG(file_stat.st_mode):
            raise ValidationError(f"Not a regular file: {staged.original_filename}")
        if file_stat.st_size == 0:
            raise ValidationError(f"File is empty: {staged.original_filename}")

        extension = FilenameUtils.get_extension(staged.original_filename)
        staged.file_size = file_stat.st_size
        staged.mime_type = ImageProcessor.get_media_type(extension)
        staged.stored_filename = FilenameUtils.get_stored_filename(staged.original_filename)

    def _resolve_owner(self, original_filename: str) -> Union[int, None]:
        owner_id = self._owner_resolver(original_filename)
        if owner_id is None:
            return None

        if self._catalog.find_user_by_id(owner_id) is None:
            self._logger.info(
                f"User id={owner_id} from '{original_filename}' doesn't exist, photo will be orphaned"
            )
            return None

        return owner_id

    def _move_to_original(self, staged: StagedFile):
        staged.stage = STAGE_MOVE_TO_ORIGINAL
        target = os.path.join(self._original_dir, staged.stored_filename)

        try:
            shutil.move(staged.current_path, target)
        except OSError as e:
            # a cross-device move may have left a partial copy behind
            if os.path.exists(staged.current_path) and os.path.exists(target):
                os.remove(target)
            raise TransientStorageError(
                f"Cannot move '{staged.original_filename}' to original storage: {e}"
            ) from e

        staged.current_path = target
        self._logger.info(f"Moved to original: {target}")

    def _run_bounded(
        self,
        stage_function: Callable[[], T],
        *,
        deadline: Union[float, None],
        cancel_event: threading.Event,
    ) -> T:
        if deadline is None or self._image_executor is None:
            return stage_function()

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ProcessingTimeoutError(
                f"Processing exceeded {self._processing_timeout}s"
            )

        future = self._image_executor.submit(stage_function)
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            cancel_event.set()
            future.cancel()
            raise ProcessingTimeoutError(
                f"Processing exceeded {self._processing_timeout}s"
            ) from None

    def _fail(self, staged: StagedFile, error: PipelineError) -> ProcessingFailure:
        self._logger.error(
            f"Failed to process photo '{staged.original_filename}' during {error.stage}: "
            f"{error.error_name}: {error.message}",
            exc_info=error if error.kind == PipelineError.kind else None,
        )

        if staged.stored_filename:
            self._thumbnail_generator.remove_derivatives(staged.stored_filename)
        staged.derivative_paths = []

        failed_path = os.path.join(self._failed_dir, staged.original_filename)
        try:
            shutil.move(staged.current_path, failed_path)
            staged.current_path = failed_path
            self._logger.info(f"Moved failed photo to: {failed_path}")
        except OSError:
            self._logger.exception(
                f"Failed to move '{staged.current_path}' to the failed directory"
            )
            failed_path = None

        diagnostic_path = self._write_diagnostic(staged.original_filename, error)
        staged.stage = STAGE_FAILED

        return ProcessingFailure(
            original_filename=staged.original_filename,
            failed_path=failed_path,
            diagnostic_path=diagnostic_path,
            error=error,
        )

    def _write_diagnostic(
        self, original_filename: str, error: PipelineError
    ) -> Union[str, None]:
        path = os.path.join(self._failed_dir, FilenameUtils.get_error_filename(original_filename))
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.format_diagnostic(error))
        except OSError:
            self._logger.exception(f"Failed to write diagnostic file '{path}'")
            return None

        return path

    @staticmethod
    def format_diagnostic(
        error: PipelineError, timestamp: Union[datetime, None] = None
    ) -> str:
        timestamp = timestamp or datetime.now(timezone.utc)
        message = " ".join(error.message.splitlines())
        return (
            f"Error: {error.error_name}\n"
            f"Kind: {error.kind}\n"
            f"Stage: {error.stage}\n"
            f"Message: {message}\n"
            f"Timestamp: {timestamp.isoformat()}\n"
        )

    def shutdown(self, wait: bool = True):
        if self._image_executor is not None:
            self._image_executor.shutdown(wait=wait, cancel_futures=True)
