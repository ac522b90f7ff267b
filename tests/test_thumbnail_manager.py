"""Tests for core.thumbnail_manager - batch generation, progress and cache records."""
import os
import threading
import time
import pytest
from unittest.mock import patch

from core.directory_scanner import scan_folder
from core.errors import DatabaseError
from core.models import GenerationProgress
from core.thumbnail_manager import GenerationConfig, ThumbnailManager
from tests.conftest import MockConfigManager, write_corrupt, write_jpeg


@pytest.fixture()
def manager(tmp_env, registry):
    tm = ThumbnailManager(tmp_env["config"], tmp_env["db"], registry)
    yield tm
    tm.shutdown(timeout=10)


@pytest.fixture()
def session_id(tmp_env):
    return tmp_env["db"].get_or_create_session("/photos/test").id


def _mixed_folder(tmp_path, good=6, corrupt=2):
    folder = tmp_path / "mixed"
    folder.mkdir()
    for i in range(good):
        ext = "jpg" if i % 2 else "nef"
        write_jpeg(folder / f"good_{i:02d}.{ext}")
    for i in range(corrupt):
        write_corrupt(folder / f"bad_{i:02d}.nef")
    return folder


class TestGenerationConfig:
    def test_from_config_override(self):
        cfg = MockConfigManager({"thumbnail_threads": 5, "thumbnail_size": 200,
                                 "cache": {"check_mtime": True}, "data_dir": "/tmp"})
        gc = GenerationConfig.from_config(cfg, cpu_count=16)
        assert gc.thread_count == 5
        assert gc.thumbnail_size == 200
        assert gc.preview_size == 2000
        assert gc.stack_size == 8 * 1024 * 1024
        assert gc.check_mtime is True

    def test_from_config_auto(self):
        cfg = MockConfigManager({"thumbnail_threads": None, "data_dir": "/tmp"})
        assert GenerationConfig.from_config(cfg, cpu_count=8).thread_count == 6
        assert GenerationConfig.from_config(cfg, cpu_count=1).thread_count == 2


class TestCacheLayout:
    def test_paths(self, manager, tmp_env):
        base = os.path.join(str(tmp_env["data_dir"]), "cache", "sid")
        assert manager.thumbnail_path_for("sid", "IMG_1.NEF") == os.path.join(base, "thumbnails", "IMG_1.jpg")
        assert manager.preview_path_for("sid", "IMG_1.NEF") == os.path.join(base, "previews", "IMG_1_preview.jpg")


class TestBatch:
    def test_completeness_with_failures(self, manager, session_id, tmp_path):
        folder = _mixed_folder(tmp_path, good=6, corrupt=2)
        images = scan_folder(str(folder))
        ticks = []

        handle = manager.generate_batch(session_id, images, on_progress=lambda c, t: ticks.append((c, t)))
        results = handle.result(timeout=30)

        assert len(results) == 8
        assert [r.filename for r in results] == [i.filename for i in images]
        failed = [r for r in results if not r.success]
        assert sorted(r.filename for r in failed) == ["bad_00.nef", "bad_01.nef"]
        assert all("RAW processing error" in r.error for r in failed)

        completed = [c for c, _ in ticks]
        assert completed == list(range(1, 9))
        assert all(t == 8 for _, t in ticks)
        assert completed.count(8) == 1

    def test_progress_stream(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        handle = manager.generate_batch(session_id, images)
        events = list(handle.progress())
        assert events == [GenerationProgress(i, 20) for i in range(1, 21)]
        assert handle.done() or handle.result(timeout=10)

    def test_progress_stream_replays_for_each_reader(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        handle = manager.generate_batch(session_id, images)
        handle.result(timeout=30)
        first = list(handle.progress())

        replayed = []
        reader = threading.Thread(target=lambda: replayed.extend(handle.progress()), daemon=True)
        reader.start()
        reader.join(5)

        assert not reader.is_alive()
        assert replayed == first
        assert len(first) == 20

    def test_progress_callback_is_serial(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        active = [0]
        overlap = []
        lock = threading.Lock()

        def on_progress(completed, total):
            with lock:
                active[0] += 1
                if active[0] > 1:
                    overlap.append(completed)
            time.sleep(0.001)
            with lock:
                active[0] -= 1

        manager.generate_batch(session_id, images, on_progress=on_progress).result(timeout=30)
        assert overlap == []

    def test_on_complete_called_after_last_progress(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        order = []
        done = threading.Event()

        def on_complete(results):
            order.append(("complete", len(results)))
            done.set()

        manager.generate_batch(session_id, images,
                               on_progress=lambda c, t: order.append(("progress", c)),
                               on_complete=on_complete)
        assert done.wait(30)
        assert order[-1] == ("complete", 20)
        assert order[-2] == ("progress", 20)

    def test_empty_batch(self, manager, session_id):
        ticks = []
        completed = []
        handle = manager.generate_batch(session_id, [], on_progress=lambda c, t: ticks.append(c),
                                        on_complete=completed.append)
        assert handle.result(timeout=1) == []
        assert list(handle.progress()) == []
        assert ticks == []
        assert completed == [[]]

    def test_raw_results_carry_preview(self, manager, session_id, tmp_path):
        folder = tmp_path / "raw"
        folder.mkdir()
        write_jpeg(folder / "a.nef", size=(3000, 2000))
        write_jpeg(folder / "b.jpg")
        results = manager.generate_batch(session_id, scan_folder(str(folder))).result(timeout=30)
        by_name = {r.filename: r for r in results}
        assert by_name["a.nef"].preview_path.endswith("previews/a_preview.jpg")
        assert os.path.exists(by_name["a.nef"].preview_path)
        assert by_name["b.jpg"].preview_path is None
        assert by_name["b.jpg"].thumbnail_path.endswith("thumbnails/b.jpg")

    def test_records_cache_entries(self, manager, session_id, tmp_env, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        manager.generate_batch(session_id, images).result(timeout=30)
        entry = tmp_env["db"].get_thumbnail_cache(session_id, images[0].filename)
        assert entry is not None
        assert entry.cache_path.endswith("image_0000.jpg")
        assert entry.original_modified == pytest.approx(os.path.getmtime(images[0].path))

    def test_second_batch_writes_nothing(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))
        manager.generate_batch(session_id, images).result(timeout=30)
        with patch("core.thumbnail_generator.save_jpeg_atomic") as save:
            results = manager.generate_batch(session_id, images).result(timeout=30)
        save.assert_not_called()
        assert all(r.success for r in results)

    def test_database_failure_does_not_fail_file(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))[:3]
        with patch.object(manager.session_db, "set_thumbnail_cache", side_effect=DatabaseError("locked")):
            results = manager.generate_batch(session_id, images).result(timeout=30)
        assert all(r.success for r in results)

    def test_unexpected_decoder_exception_is_captured(self, manager, session_id, sample_images, registry):
        images = scan_folder(os.path.dirname(sample_images[0]))[:4]
        plugin = registry.get_plugin_for_format(".jpg")
        with patch.object(plugin, "load_image", side_effect=RuntimeError("decoder crashed")):
            results = manager.generate_batch(session_id, images).result(timeout=30)
        assert len(results) == 4
        assert all(not r.success and "decoder crashed" in r.error for r in results)

    def test_check_mtime_regenerates_changed_source(self, tmp_env, registry, session_id, tmp_path):
        config = MockConfigManager({"data_dir": str(tmp_env["data_dir"]), "cache": {"check_mtime": True}})
        tm = ThumbnailManager(config, tmp_env["db"], registry)
        folder = tmp_path / "edit"
        folder.mkdir()
        src = write_jpeg(folder / "a.jpg", color=(255, 0, 0))
        tm.generate_batch(session_id, scan_folder(str(folder))).result(timeout=30)

        write_jpeg(folder / "a.jpg", color=(0, 0, 255))
        os.utime(src, (time.time() + 10, time.time() + 10))
        with patch("core.thumbnail_generator.save_jpeg_atomic") as save:
            tm.generate_batch(session_id, scan_folder(str(folder))).result(timeout=30)
        assert save.call_count == 1

    def test_existence_only_by_default(self, manager, session_id, tmp_path):
        folder = tmp_path / "edit"
        folder.mkdir()
        src = write_jpeg(folder / "a.jpg")
        manager.generate_batch(session_id, scan_folder(str(folder))).result(timeout=30)
        os.utime(src, (time.time() + 10, time.time() + 10))
        with patch("core.thumbnail_generator.save_jpeg_atomic") as save:
            manager.generate_batch(session_id, scan_folder(str(folder))).result(timeout=30)
        save.assert_not_called()

    def test_cached_thumbnail_lookup(self, manager, session_id, sample_images):
        images = scan_folder(os.path.dirname(sample_images[0]))[:1]
        assert manager.get_cached_thumbnail(session_id, images[0].filename) is None
        manager.generate_batch(session_id, images).result(timeout=30)
        path = manager.get_cached_thumbnail(session_id, images[0].filename)
        assert path and os.path.exists(path)
