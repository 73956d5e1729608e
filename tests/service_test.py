import os

import pytest
from PIL import Image

from photoflow.exceptions import (
    PhotoNotFoundError,
    RatingNotFoundError,
    RatingValueError,
    UserNotFoundError,
)

from conftest import listdir


@pytest.fixture
def users(catalog):
    return [catalog.add_user(name) for name in ("alice", "bob", "carol")]


def test_rating_twice_should_update_in_place(service, catalog, ingest, users):
    photo_id = ingest().photo_id
    alice = users[0]

    service.rate_photo(photo_id, alice, 3)
    service.rate_photo(photo_id, alice, 5)

    assert catalog.list_ratings(photo_id) == [(alice, 5)]
    assert catalog.find_rating(photo_id, alice).value == 5


@pytest.mark.parametrize("value", [0, 6])
def test_out_of_range_rating_should_not_touch_storage(service, catalog, ingest, users, value):
    photo_id = ingest().photo_id
    alice = users[0]
    service.rate_photo(photo_id, alice, 2)

    with pytest.raises(RatingValueError):
        service.rate_photo(photo_id, alice, value)
    with pytest.raises(RatingValueError):
        service.rate_photo(photo_id, users[1], value)

    assert catalog.list_ratings(photo_id) == [(alice, 2)]


def test_rating_unknown_photo_or_user_should_fail(service, ingest, users):
    photo_id = ingest().photo_id

    with pytest.raises(PhotoNotFoundError):
        service.rate_photo(photo_id + 100, users[0], 3)
    with pytest.raises(UserNotFoundError):
        service.rate_photo(photo_id, 4242, 3)


def test_clearing_rating_should_require_an_existing_one(service, catalog, ingest, users):
    photo_id = ingest().photo_id
    alice = users[0]
    service.rate_photo(photo_id, alice, 4)

    service.clear_rating(photo_id, alice)

    assert catalog.find_rating(photo_id, alice) is None
    with pytest.raises(RatingNotFoundError):
        service.clear_rating(photo_id, alice)


def test_display_rating_should_be_personalized(service, ingest, users):
    photo_id = ingest().photo_id
    alice, bob, carol = users
    service.rate_photo(photo_id, alice, 5)
    service.rate_photo(photo_id, bob, 3)

    assert service.get_display_rating(photo_id, alice).value == 5
    assert service.get_display_rating(photo_id, carol).value == 4
    assert service.get_display_rating(photo_id).value == 4
    assert {service.get_display_rating(photo_id, v).count for v in (alice, carol, None)} == {2}
    assert service.get_average_rating(photo_id) == 4


def test_unrated_photo_should_have_no_display_rating(service, ingest, users):
    photo_id = ingest().photo_id

    rating = service.get_display_rating(photo_id, users[0])

    assert rating.value is None
    assert rating.count == 0


def test_deleting_photo_should_cascade_to_ratings_and_files(service, catalog, ingest, users, layout):
    photo_id = ingest(size=(800, 600)).photo_id
    other_id = ingest("other.jpg").photo_id
    for user in users:
        service.rate_photo(photo_id, user, 4)
    service.rate_photo(other_id, users[0], 1)
    stored = catalog.get_photo(photo_id).filename

    service.delete_photo(photo_id)

    assert catalog.get_photo(photo_id) is None
    assert catalog.list_ratings(photo_id) == []
    assert catalog.list_ratings(other_id) == [(users[0], 1)]
    assert stored not in listdir(layout.original)
    assert stored not in listdir(layout.derivative)
    assert len(listdir(layout.original)) == 1
    with pytest.raises(PhotoNotFoundError):
        service.delete_photo(photo_id)


def test_orphaned_photos_should_be_listed_and_bulk_deleted(service, catalog, ingest, layout):
    owner = catalog.add_user("owner", user_id=7)
    owned = ingest("7_owned.jpg").photo_id
    orphan_ids = {ingest("a.jpg").photo_id, ingest("0_b.jpg").photo_id}

    assert {photo.id for photo in service.list_orphaned_photos()} == orphan_ids

    result = service.delete_orphaned_photos()

    assert (result.deleted, result.total) == (2, 2)
    assert service.list_orphaned_photos() == []
    assert catalog.get_photo(owned).user_id == owner
    assert listdir(layout.original) == [catalog.get_photo(owned).filename]


def test_deleted_user_should_leave_orphaned_photos(service, catalog, ingest):
    catalog.add_user("owner", user_id=7)
    photo_id = ingest("7_mine.jpg").photo_id
    service.rate_photo(photo_id, 7, 5)

    catalog.delete_user(7)

    photo = catalog.get_photo(photo_id)
    assert photo.is_orphaned
    assert catalog.list_ratings(photo_id) == []


def test_reassigning_owner(service, catalog, ingest, users):
    photo_id = ingest().photo_id

    service.reassign_owner(photo_id, users[1])
    assert catalog.get_photo(photo_id).user_id == users[1]

    service.reassign_owner(photo_id, None)
    assert catalog.get_photo(photo_id).user_id is None

    with pytest.raises(UserNotFoundError):
        service.reassign_owner(photo_id, 4242)


def test_regenerating_derivatives_should_rewrite_preview(service, catalog, ingest, layout):
    photo_id = ingest(size=(900, 300)).photo_id
    photo = catalog.get_photo(photo_id)
    os.remove(layout.derivative / photo.filename)

    paths = service.regenerate_derivatives(photo_id)

    assert paths == [str(layout.derivative / photo.filename)]
    with Image.open(paths[0]) as derivative:
        assert derivative.size == (300, 100)
    assert catalog.get_photo(photo_id).thumbnail_filename == photo.filename
