import logging
import os
from typing import Union

from photoflow.catalog import CatalogWriter
from photoflow.classes import BulkDeleteResult, DisplayRating, PhotoRecord
from photoflow.exceptions import (
    PhotoNotFoundError,
    PhotoflowError,
    UserNotFoundError,
)
from photoflow.ratings import average_rating, compute_display_rating, validate_rating_value
from photoflow.thumbnails import ThumbnailGenerator


class PhotoService:
    """
    Synchronous, caller-facing operations on catalogued photos. Errors are
    raised straight to the caller; nothing here is retried.
    """

    _catalog: CatalogWriter
    _original_dir: str
    _thumbnail_generator: ThumbnailGenerator
    _logger: logging.Logger

    def __init__(
        self,
        *,
        catalog: CatalogWriter,
        original_dir: str,
        thumbnail_generator: ThumbnailGenerator,
    ):
        self._catalog = catalog
        self._original_dir = os.path.abspath(original_dir)
        self._thumbnail_generator = thumbnail_generator
        self._logger = logging.getLogger(__name__)

    def get_photo(self, photo_id: int) -> PhotoRecord:
        photo = self._catalog.get_photo(photo_id)
        if photo is None:
            raise PhotoNotFoundError(f"Photo with id={photo_id} not found")
        return photo

    def get_display_rating(
        self, photo_id: int, viewer_id: Union[int, None] = None
    ) -> DisplayRating:
        self.get_photo(photo_id)
        return compute_display_rating(self._catalog.list_ratings(photo_id), viewer_id)

    def get_average_rating(self, photo_id: int) -> Union[float, None]:
        self.get_photo(photo_id)
        return average_rating(self._catalog.list_ratings(photo_id))

    def rate_photo(self, photo_id: int, user_id: int, value: int) -> int:
        value = validate_rating_value(value)

        self.get_photo(photo_id)
        if self._catalog.find_user_by_id(user_id) is None:
            raise UserNotFoundError(f"User with id={user_id} not found")

        self._catalog.upsert_rating(photo_id, user_id, value)
        self._logger.info(f"Rating set: photoId={photo_id}, userId={user_id}, value={value}")
        return value

    def clear_rating(self, photo_id: int, user_id: int) -> None:
        self._catalog.delete_rating(photo_id, user_id)
        self._logger.info(f"Rating cleared: photoId={photo_id}, userId={user_id}")

    def delete_photo(self, photo_id: int) -> PhotoRecord:
        """
        Deletes the catalog row (its ratings go with it), then the original
        and every derivative on disk.
        """
        photo = self._catalog.delete_photo(photo_id)
        self._delete_photo_files(photo)
        self._logger.info(f"Photo deleted: id={photo_id}, filename={photo.filename}")
        return photo

    def list_orphaned_photos(self) -> list[PhotoRecord]:
        return self._catalog.list_orphaned_photos()

    def delete_orphaned_photos(self) -> BulkDeleteResult:
        orphaned_photos = self._catalog.list_orphaned_photos()

        deleted = 0
        for photo in orphaned_photos:
            try:
                self.delete_photo(photo.id)
                deleted += 1
            except (PhotoflowError, OSError):
                self._logger.exception(f"Failed to delete photo: {photo.id}")

        return BulkDeleteResult(deleted=deleted, total=len(orphaned_photos))

    def reassign_owner(self, photo_id: int, user_id: Union[int, None]) -> None:
        self._catalog.assign_owner(photo_id, user_id)
        self._logger.info(f"Photo id={photo_id} now owned by user id={user_id}")

    def regenerate_derivatives(self, photo_id: int) -> list[str]:
        photo = self.get_photo(photo_id)
        original_path = os.path.join(self._original_dir, photo.filename)

        paths = self._thumbnail_generator.generate(original_path, photo.filename)
        self._catalog.update_derivative(photo_id, os.path.basename(paths[0]))
        self._logger.info(f"Regenerated {len(paths)} derivative(s) for photo id={photo_id}")
        return paths

    def _delete_photo_files(self, photo: PhotoRecord):
        original_path = os.path.join(self._original_dir, photo.filename)
        try:
            os.remove(original_path)
        except FileNotFoundError:
            self._logger.warning(f"Original '{original_path}' was already gone")

        self._thumbnail_generator.remove_derivatives(photo.filename)
