import threading

import pytest

from idscan import assets as assets_mod
from idscan.assets import AssetStager
from idscan.exceptions import AssetStagingError

from .conftest import TRAINEDDATA_BYTES


def test_ensure_copies_once_and_is_idempotent(tmp_path, bundled_dir):
    stager = AssetStager(bundled_dir, "spa")
    data_dir = tmp_path / "data"

    target = stager.ensure(data_dir)
    assert target == data_dir / "tessdata" / "spa.traineddata"
    assert target.read_bytes() == TRAINEDDATA_BYTES
    assert stager.copies_performed == 1

    assert stager.ensure(data_dir) == target
    assert target.read_bytes() == TRAINEDDATA_BYTES
    assert stager.copies_performed == 1


def test_existing_file_is_left_alone(tmp_path, bundled_dir):
    target = tmp_path / "data" / "tessdata" / "spa.traineddata"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"already here")

    stager = AssetStager(bundled_dir, "spa")
    stager.ensure(tmp_path / "data")
    assert target.read_bytes() == b"already here"
    assert stager.copies_performed == 0


def test_missing_bundled_source(tmp_path):
    stager = AssetStager(tmp_path / "nowhere", "spa")
    with pytest.raises(AssetStagingError):
        stager.ensure(tmp_path / "data")
    assert not (tmp_path / "data" / "tessdata" / "spa.traineddata").exists()


def test_directory_creation_failure(tmp_path, bundled_dir):
    blocker = tmp_path / "data"
    blocker.write_text("a file where the directory should be")
    with pytest.raises(AssetStagingError):
        AssetStager(bundled_dir, "spa").ensure(blocker)


def test_failed_copy_leaves_nothing_visible(tmp_path, bundled_dir, monkeypatch):
    def disk_full(src, dst, length=0):
        dst.write(src.read(100))
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(assets_mod.shutil, "copyfileobj", disk_full)
    stager = AssetStager(bundled_dir, "spa")
    data_dir = tmp_path / "data"

    with pytest.raises(AssetStagingError):
        stager.ensure(data_dir)

    tessdata = data_dir / "tessdata"
    assert not (tessdata / "spa.traineddata").exists()
    assert list(tessdata.iterdir()) == []
    assert stager.copies_performed == 0

    # once the disk has room again the copy succeeds
    monkeypatch.undo()
    assert stager.ensure(data_dir).read_bytes() == TRAINEDDATA_BYTES


def test_concurrent_ensure_copies_once(tmp_path, bundled_dir):
    stager = AssetStager(bundled_dir, "spa")
    data_dir = tmp_path / "data"
    barrier = threading.Barrier(8)
    errors = []

    def worker():
        barrier.wait()
        try:
            stager.ensure(data_dir)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert stager.copies_performed == 1
    assert stager.is_staged(data_dir)
