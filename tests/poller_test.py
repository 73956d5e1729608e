import errno
import os
import shutil
import time
from concurrent.futures import wait

import pytest

from photoflow.poller import IntakePoller

from conftest import listdir, write_image


@pytest.fixture
def poller(lifecycle):
    poller = IntakePoller(lifecycle=lifecycle, poll_interval=0.05, max_workers=2)
    yield poller
    poller.stop(wait=True)


def wait_for(condition, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return False


def test_poll_should_dispatch_allowed_files_and_ignore_others(poller, catalog, layout):
    write_image(layout.incoming / "a.jpg")
    write_image(layout.incoming / "b.PNG", format="PNG")
    write_image(layout.incoming / "c.gif", format="GIF")
    (layout.incoming / "notes.txt").write_text("not a photo")
    (layout.incoming / "subdir.jpg").mkdir()

    futures = poller.poll_once()
    wait(futures)

    assert len(futures) == 2
    assert all(future.result().ok for future in futures)
    assert listdir(layout.incoming) == ["c.gif", "notes.txt", "subdir.jpg"]
    assert listdir(layout.failed) == []
    assert catalog.get_total_photo_count() == 2


def test_second_poll_should_not_process_the_same_file_again(poller, catalog, layout):
    write_image(layout.incoming / "a.jpg")

    first = poller.poll_once()
    second = poller.poll_once()
    wait(first + second)

    assert len(first) == 1
    assert second == []
    assert catalog.get_total_photo_count() == 1
    assert listdir(layout.incoming) == []


def test_failed_file_should_not_stop_the_others(poller, catalog, layout):
    (layout.incoming / "broken.jpg").write_bytes(b"nope")
    write_image(layout.incoming / "good.jpg")

    futures = poller.poll_once()
    wait(futures)

    assert sorted(future.result().ok for future in futures) == [False, True]
    assert listdir(layout.failed) == ["broken.jpg", "broken.jpg.error.txt"]
    assert catalog.get_total_photo_count() == 1


def test_unreadable_incoming_dir_should_be_retried(poller, catalog, layout):
    shutil.rmtree(layout.incoming)

    assert poller.poll_once() == []

    layout.incoming.mkdir()
    write_image(layout.incoming / "a.jpg")
    futures = poller.poll_once()
    wait(futures)

    assert len(futures) == 1
    assert catalog.get_total_photo_count() == 1


def test_started_poller_should_pick_up_new_and_interrupted_files(poller, catalog, layout):
    write_image(layout.claimed / "0123456789abcdef0123456789abcdef.old.jpg")

    poller.start()
    assert poller.is_running()
    # write under an ignored name first so the poller never sees a half-written file
    write_image(layout.incoming / "new.part", format="JPEG")
    (layout.incoming / "new.part").rename(layout.incoming / "new.jpg")

    assert wait_for(lambda: catalog.get_total_photo_count() == 2)
    assert listdir(layout.incoming) == []
    assert listdir(layout.claimed) == []


def test_stopped_poller_should_not_run_anymore(poller):
    poller.start()
    poller.stop(wait=True)

    assert not poller.is_running()


def test_poll_interval_should_be_positive(lifecycle):
    with pytest.raises(ValueError):
        IntakePoller(lifecycle=lifecycle, poll_interval=0)


def test_long_filename_should_leave_incoming_after_one_poll(poller, catalog, layout):
    write_image(layout.incoming / ("a" * 230 + ".jpg"))

    futures = poller.poll_once()
    wait(futures)

    assert len(futures) == 1
    assert futures[0].result().ok
    assert listdir(layout.incoming) == []
    assert poller.poll_once() == []
    assert catalog.get_total_photo_count() == 1


def test_unclaimable_file_should_not_be_retried_forever(monkeypatch, poller, layout):
    real_rename = os.rename

    def rename(src, dst):
        if os.path.dirname(dst) == str(layout.claimed):
            raise OSError(errno.ENAMETOOLONG, "File name too long", dst)
        return real_rename(src, dst)

    monkeypatch.setattr(os, "rename", rename)
    write_image(layout.incoming / "photo.jpg")

    assert poller.poll_once() == []
    assert listdir(layout.incoming) == []
    assert listdir(layout.failed) == ["photo.jpg", "photo.jpg.error.txt"]
    assert poller.poll_once() == []
