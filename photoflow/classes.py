from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Union

from photoflow.exceptions import PipelineError


@dataclass
class ExtractedMetadata:
    latitude: Union[Decimal, None] = None
    longitude: Union[Decimal, None] = None
    taken_at: Union[datetime, None] = None

    @property
    def has_gps(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class StagedFile:
    """A single upload on its way through the pipeline. `current_path` always
    points at wherever the file physically is right now."""

    original_filename: str
    current_path: str
    stage: str = "incoming"
    stored_filename: Union[str, None] = None
    file_size: Union[int, None] = None
    mime_type: Union[str, None] = None
    owner_id: Union[int, None] = None
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    thumbnail_filename: Union[str, None] = None
    derivative_paths: list[str] = field(default_factory=list)


@dataclass
class ProcessingSuccess:
    photo_id: int
    stored_filename: str
    original_path: str
    derivative_paths: list[str]

    ok = True


@dataclass
class ProcessingFailure:
    original_filename: str
    failed_path: Union[str, None]
    diagnostic_path: Union[str, None]
    error: PipelineError

    ok = False


ProcessingResult = Union[ProcessingSuccess, ProcessingFailure]


@dataclass
class UserRecord:
    id: int
    username: str


@dataclass
class RatingRecord:
    photo_id: int
    user_id: int
    value: int
    created_at: Union[datetime, None] = None


@dataclass
class PhotoRecord:
    id: int
    filename: str
    original_filename: str
    file_size: int
    mime_type: str
    thumbnail_filename: Union[str, None] = None
    gps_latitude: Union[Decimal, None] = None
    gps_longitude: Union[Decimal, None] = None
    taken_at: Union[datetime, None] = None
    uploaded_at: Union[datetime, None] = None
    updated_at: Union[datetime, None] = None
    user_id: Union[int, None] = None

    @property
    def is_orphaned(self) -> bool:
        return self.user_id is None


@dataclass
class DisplayRating:
    value: Union[float, None]
    count: int
    own_rating: Union[int, None] = None


@dataclass
class BulkDeleteResult:
    deleted: int
    total: int
