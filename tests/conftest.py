import os
from types import SimpleNamespace

import pytest
from PIL import Image

from photoflow.catalog import SqlCatalogWriter
from photoflow.lifecycle import LifecycleManager
from photoflow.service import PhotoService
from photoflow.thumbnails import ThumbnailGenerator

GPS_IFD = 0x8825
EXIF_IFD = 0x8769
DATETIME_ORIGINAL = 0x9003


def build_exif(gps=None, taken_at=None) -> Image.Exif:
    """
    gps: ((lat_ref, (d, m, s)), (lon_ref, (d, m, s)))
    taken_at: EXIF formatted string, e.g. "2024:06:01 10:00:00"
    """
    exif = Image.Exif()
    if gps:
        (lat_ref, lat), (lon_ref, lon) = gps
        exif[GPS_IFD] = {1: lat_ref, 2: lat, 3: lon_ref, 4: lon}
    if taken_at:
        exif[EXIF_IFD] = {DATETIME_ORIGINAL: taken_at}
    return exif


def write_image(
    path,
    size=(640, 480),
    format="JPEG",
    gps=None,
    taken_at=None,
    color=(200, 80, 40),
) -> str:
    path = str(path)
    image = Image.new("RGB", size, color)
    save_properties = {}
    if gps or taken_at:
        save_properties["exif"] = build_exif(gps=gps, taken_at=taken_at)
    image.save(path, format=format, **save_properties)
    return path


@pytest.fixture
def layout(tmp_path):
    dirs = SimpleNamespace(
        incoming=tmp_path / "incoming",
        claimed=tmp_path / "processing",
        original=tmp_path / "original",
        derivative=tmp_path / "medium",
        failed=tmp_path / "failed",
    )
    for directory in vars(dirs).values():
        directory.mkdir()
    return dirs


@pytest.fixture
def catalog(tmp_path):
    catalog = SqlCatalogWriter(connection_string=f"sqlite:///{tmp_path / 'catalog.db'}")
    yield catalog
    catalog.engine.dispose()


@pytest.fixture
def thumbnail_generator(layout):
    return ThumbnailGenerator(derivative_dir=str(layout.derivative), sizes=[300])


@pytest.fixture
def lifecycle(catalog, layout, thumbnail_generator):
    manager = LifecycleManager(
        catalog=catalog,
        thumbnail_generator=thumbnail_generator,
        incoming_dir=str(layout.incoming),
        claimed_dir=str(layout.claimed),
        original_dir=str(layout.original),
        failed_dir=str(layout.failed),
    )
    yield manager
    manager.shutdown()


@pytest.fixture
def service(catalog, layout, thumbnail_generator):
    return PhotoService(
        catalog=catalog,
        original_dir=str(layout.original),
        thumbnail_generator=thumbnail_generator,
    )


@pytest.fixture
def ingest(layout, lifecycle):
    """Drops an image into the incoming directory and runs it through the pipeline."""

    def _ingest(filename="photo.jpg", **image_kwargs):
        write_image(layout.incoming / filename, **image_kwargs)
        result = lifecycle.process_file(filename)
        assert result.ok, result
        return result

    return _ingest


def listdir(path) -> list[str]:
    return sorted(os.listdir(path))
