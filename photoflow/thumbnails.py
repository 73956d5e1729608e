import logging
import os
import threading
from typing import Union

from photoflow.constants import Constants
from photoflow.utils.filename import FilenameUtils
from photoflow.utils.image import ImageProcessor

STAGING_SUFFIX = ".staged"


class ThumbnailGenerator:
    _derivative_dir: str
    _sizes: list[int]
    _quality: int
    _logger: logging.Logger

    def __init__(
        self,
        *,
        derivative_dir: str,
        sizes: Union[list[int], None] = None,
        quality: int = Constants.THUMBNAIL_QUALITY,
    ):
        sizes = list(sizes or Constants.THUMBNAIL_SIZES)
        if not sizes or any(size <= 0 for size in sizes):
            raise ValueError(f"Thumbnail sizes must be positive, got {sizes}")
        if not 1 <= quality <= 100:
            raise ValueError(f"Thumbnail quality must be within 1..100, got {quality}")

        self._derivative_dir = os.path.abspath(derivative_dir)
        self._sizes = sizes
        self._quality = quality
        self._logger = logging.getLogger(__name__)

    @property
    def sizes(self) -> list[int]:
        return list(self._sizes)

    def get_derivative_filenames(self, stored_filename: str) -> list[str]:
        return [
            FilenameUtils.get_derivative_filename(stored_filename, size, primary=i == 0)
            for i, size in enumerate(self._sizes)
        ]

    def get_derivative_paths(self, stored_filename: str) -> list[str]:
        return [
            os.path.join(self._derivative_dir, filename)
            for filename in self.get_derivative_filenames(stored_filename)
        ]

    def generate(
        self,
        source_filename: str,
        stored_filename: str,
        cancel_event: Union[threading.Event, None] = None,
    ) -> list[str]:
        """
        Writes one derivative per configured size and returns their paths,
        primary size first.

        Every size is rendered to a staging file first and only renamed over
        the existing derivatives once all of them succeeded, so a failure
        leaves previously published derivatives untouched.
        """
        os.makedirs(self._derivative_dir, exist_ok=True)

        paths = self.get_derivative_paths(stored_filename)
        staged = []
        try:
            for size, path in zip(self._sizes, paths):
                staging_path = f"{path}{STAGING_SUFFIX}"
                width, height = ImageProcessor.write_scaled_copy_to_filesystem(
                    source_filename=source_filename,
                    output_filename=staging_path,
                    max_size=size,
                    quality=self._quality,
                    cancel_event=cancel_event,
                )
                staged.append(staging_path)
                self._logger.info(
                    f"Generated thumbnail: {width}x{height} within {size}x{size} "
                    f"(quality: {self._quality}) -> {path}"
                )

            if cancel_event is not None and cancel_event.is_set():
                raise InterruptedError(
                    f"Publishing derivatives of '{stored_filename}' was cancelled"
                )

            for staging_path, path in zip(staged, paths):
                os.replace(staging_path, path)
        except BaseException:
            self.remove_files(staged)
            raise

        return paths

    def remove_derivatives(self, stored_filename: str) -> None:
        self.remove_files(self.get_derivative_paths(stored_filename))

    def remove_files(self, paths: list[str]) -> None:
        for path in paths:
            try:
                os.remove(path)
                self._logger.debug(f"Removed derivative '{path}'")
            except FileNotFoundError:
                pass
            except OSError:
                self._logger.exception(f"Failed to remove derivative '{path}'")
