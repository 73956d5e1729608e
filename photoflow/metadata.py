import logging
import math
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from PIL import Image

from photoflow.classes import ExtractedMetadata
from photoflow.constants import Constants
from photoflow.exceptions import MetadataParseError

GPS_QUANTUM = Decimal(1).scaleb(-Constants.GPS_DECIMAL_PLACES)


class MetadataExtractor:
    """
    Best-effort reader for the capture time and GPS position embedded in an
    image. Missing or broken metadata is reported as None, never raised.
    """

    _logger: logging.Logger

    def __init__(self):
        self._logger = logging.getLogger(__name__)

    def extract(self, filename: str) -> ExtractedMetadata:
        try:
            with Image.open(filename) as image:
                exif = image.getexif()
        except Exception as e:
            self._logger.warning(
                f"Failed to read metadata from '{os.path.basename(filename)}': {e}"
            )
            return ExtractedMetadata()

        latitude, longitude = self._extract_gps(exif, filename)
        taken_at = self._extract_taken_at(exif, filename)

        return ExtractedMetadata(latitude=latitude, longitude=longitude, taken_at=taken_at)

    def _extract_gps(
        self, exif: Image.Exif, filename: str
    ) -> tuple[Union[Decimal, None], Union[Decimal, None]]:
        try:
            gps_info = exif.get_ifd(Constants.GPS_IFD)
            if not gps_info:
                return None, None

            latitude = self.to_decimal_degrees(
                gps_info.get(Constants.TAG_GPS_LATITUDE),
                gps_info.get(Constants.TAG_GPS_LATITUDE_REF),
                limit=90,
            )
            longitude = self.to_decimal_degrees(
                gps_info.get(Constants.TAG_GPS_LONGITUDE),
                gps_info.get(Constants.TAG_GPS_LONGITUDE_REF),
                limit=180,
            )
        except Exception as e:
            self._logger.warning(
                f"Ignoring malformed GPS block in '{os.path.basename(filename)}': {e}"
            )
            return None, None

        self._logger.info(f"Extracted GPS: lat={latitude}, lng={longitude}")
        return latitude, longitude

    def _extract_taken_at(self, exif: Image.Exif, filename: str) -> Union[datetime, None]:
        try:
            value = exif.get_ifd(Constants.EXIF_IFD).get(Constants.TAG_DATETIME_ORIGINAL)
            if value is None:
                # some writers put it into IFD0
                value = exif.get(Constants.TAG_DATETIME_ORIGINAL)
            if value is None:
                return None

            taken_at = self.parse_exif_datetime(value)
        except Exception as e:
            self._logger.warning(
                f"Ignoring malformed capture date in '{os.path.basename(filename)}': {e}"
            )
            return None

        self._logger.info(f"Extracted date taken: {taken_at.isoformat()}")
        return taken_at

    @staticmethod
    def to_decimal_degrees(values: Any, ref: Any, limit: int) -> Decimal:
        if values is None or ref is None:
            raise MetadataParseError("Coordinate or reference missing")

        if isinstance(ref, bytes):
            ref = ref.decode("ascii", errors="ignore")
        ref = str(ref).strip("\x00 ").upper()
        if ref not in ("N", "S", "E", "W"):
            raise MetadataParseError(f"Unknown coordinate reference '{ref}'")

        parts = [float(v) for v in values]
        if not 1 <= len(parts) <= 3 or not all(math.isfinite(p) for p in parts):
            raise MetadataParseError(f"Unusable coordinate {values!r}")

        parts += [0.0] * (3 - len(parts))
        degrees, minutes, seconds = parts
        value = degrees + minutes / 60 + seconds / 3600
        if ref in ("S", "W"):
            value = -value

        if abs(value) > limit:
            raise MetadataParseError(f"Coordinate {value} out of range")

        try:
            return Decimal(repr(value)).quantize(GPS_QUANTUM)
        except InvalidOperation as e:
            raise MetadataParseError(str(e)) from e

    @staticmethod
    def parse_exif_datetime(value: Any) -> datetime:
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="ignore")
        try:
            return datetime.strptime(str(value).strip("\x00 "), Constants.EXIF_DATETIME_FORMAT)
        except ValueError as e:
            raise MetadataParseError(f"Invalid EXIF datetime '{value}'") from e
