from datetime import datetime
from decimal import Decimal

import pytest

from photoflow.catalog import SqlCatalogWriter
from photoflow.classes import ExtractedMetadata, StagedFile
from photoflow.exceptions import PersistenceError, RatingNotFoundError, UserNotFoundError


def staged_file(stored_filename="abc.jpg", owner_id=None, **metadata) -> StagedFile:
    return StagedFile(
        original_filename="photo.jpg",
        current_path=f"/tmp/{stored_filename}",
        stored_filename=stored_filename,
        file_size=1024,
        mime_type="image/jpeg",
        owner_id=owner_id,
        thumbnail_filename=stored_filename,
        metadata=ExtractedMetadata(**metadata),
    )


def test_create_photo_should_store_all_fields(catalog):
    owner = catalog.add_user("alice")
    taken_at = datetime(2024, 6, 1, 10, 0, 0)

    photo_id = catalog.create_photo(
        staged_file(
            owner_id=owner,
            latitude=Decimal("52.52000000"),
            longitude=Decimal("13.40500000"),
            taken_at=taken_at,
        )
    )

    photo = catalog.get_photo(photo_id)
    assert photo.user_id == owner
    assert photo.filename == "abc.jpg"
    assert photo.original_filename == "photo.jpg"
    assert photo.file_size == 1024
    assert photo.mime_type == "image/jpeg"
    assert float(photo.gps_latitude) == pytest.approx(52.52)
    assert float(photo.gps_longitude) == pytest.approx(13.405)
    assert photo.taken_at == taken_at
    assert photo.uploaded_at is not None
    assert catalog.get_total_photo_count() == 1


def test_half_a_coordinate_should_store_no_location(catalog):
    photo_id = catalog.create_photo(staged_file(latitude=Decimal("52.52")))

    photo = catalog.get_photo(photo_id)
    assert photo.gps_latitude is None
    assert photo.gps_longitude is None


def test_duplicate_stored_filename_should_be_a_persistence_error(catalog):
    catalog.create_photo(staged_file("same.jpg"))

    with pytest.raises(PersistenceError):
        catalog.create_photo(staged_file("same.jpg"))
    assert catalog.get_total_photo_count() == 1


def test_upsert_should_keep_a_single_row(catalog):
    user = catalog.add_user("alice")
    photo_id = catalog.create_photo(staged_file())

    catalog.upsert_rating(photo_id, user, 1)
    catalog.upsert_rating(photo_id, user, 4)

    assert catalog.list_ratings(photo_id) == [(user, 4)]


def test_deleting_missing_rating_should_fail(catalog):
    user = catalog.add_user("alice")
    photo_id = catalog.create_photo(staged_file())

    with pytest.raises(RatingNotFoundError):
        catalog.delete_rating(photo_id, user)


def test_deleting_user_should_orphan_photos_and_drop_ratings(catalog):
    owner = catalog.add_user("owner")
    rater = catalog.add_user("rater")
    photo_id = catalog.create_photo(staged_file(owner_id=owner))
    catalog.upsert_rating(photo_id, owner, 5)
    catalog.upsert_rating(photo_id, rater, 2)

    catalog.delete_user(owner)

    assert catalog.get_photo(photo_id).user_id is None
    assert [photo.id for photo in catalog.list_orphaned_photos()] == [photo_id]
    assert catalog.list_ratings(photo_id) == [(rater, 2)]
    with pytest.raises(UserNotFoundError):
        catalog.delete_user(owner)


def test_unknown_user_should_not_be_found(catalog):
    assert catalog.find_user_by_id(4242) is None
    assert catalog.find_user_by_id(catalog.add_user("bob")).username == "bob"


def test_in_memory_catalog_should_be_shared_across_sessions():
    catalog = SqlCatalogWriter(connection_string="sqlite:///")
    try:
        user = catalog.add_user("alice")
        photo_id = catalog.create_photo(staged_file())
        catalog.upsert_rating(photo_id, user, 3)

        assert catalog.find_rating(photo_id, user).value == 3
    finally:
        catalog.engine.dispose()
