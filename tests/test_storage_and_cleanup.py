import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from edutest.services.storage import LocalBlobStorage, make_blob_key
from edutest.workers import tasks as cleanup_tasks
from edutest.workers.queue import schedule_blob_cleanup

from tests.conftest import MemoryStorage


class TestBlobKeys:
    def test_key_keeps_extension_and_prefix(self):
        key = make_blob_key(12, 3, filename="Photo.JPG")
        assert key.startswith("12_3_")
        assert key.endswith(".jpg")

    def test_default_extension(self):
        assert make_blob_key(7, filename="scan", default_ext="pdf").endswith(".pdf")
        assert make_blob_key(7).endswith(".bin")

    def test_keys_are_unique(self):
        assert make_blob_key(1, 1, filename="a.jpg") != make_blob_key(1, 1, filename="a.jpg")


class TestLocalBlobStorage:
    def test_upload_and_delete(self, tmp_path):
        storage = LocalBlobStorage(str(tmp_path), "http://testserver/")

        url = storage.upload("answer_images", "5_1_abc.jpg", b"jpeg", "image/jpeg")

        assert url == "http://testserver/media/answer_images/5_1_abc.jpg"
        assert (tmp_path / "answer_images" / "5_1_abc.jpg").read_bytes() == b"jpeg"

        storage.delete("answer_images", "5_1_abc.jpg")
        assert not (tmp_path / "answer_images" / "5_1_abc.jpg").exists()
        # deleting again is fine
        storage.delete("answer_images", "5_1_abc.jpg")

    def test_rejects_path_traversal(self, tmp_path):
        storage = LocalBlobStorage(str(tmp_path / "media"), "http://testserver")
        with pytest.raises(ValueError):
            storage.upload("answer_images", "../../etc/passwd", b"x")


class TestBlobCleanup:
    def test_cleanup_task_deletes_each_blob(self, monkeypatch):
        storage = MemoryStorage()
        storage.upload("answer_images", "a.jpg", b"1")
        storage.upload("answer_images", "b.jpg", b"2")
        monkeypatch.setattr(cleanup_tasks, "get_storage", lambda: storage)

        result = cleanup_tasks.cleanup_blobs_task("answer_images", ["a.jpg", "b.jpg"])

        assert result["status"] == "success"
        assert result["deleted"] == ["a.jpg", "b.jpg"]
        assert storage.blobs == {}

    def test_cleanup_task_continues_after_failure(self, monkeypatch):
        class FlakyStorage(MemoryStorage):
            def delete(self, bucket, path):
                if path == "bad.jpg":
                    raise OSError("permission denied")
                super().delete(bucket, path)

        storage = FlakyStorage()
        monkeypatch.setattr(cleanup_tasks, "get_storage", lambda: storage)

        result = cleanup_tasks.cleanup_blobs_task("answer_images", ["bad.jpg", "ok.jpg"])

        assert result["status"] == "partial"
        assert result["failed"] == ["bad.jpg"]
        assert result["deleted"] == ["ok.jpg"]

    def test_schedule_enqueues_job(self, monkeypatch):
        enqueued = []

        def fake_enqueue(bucket, paths):
            enqueued.append((bucket, paths))
            return "job-1"

        monkeypatch.setattr("edutest.workers.queue.enqueue_blob_cleanup", fake_enqueue)

        assert schedule_blob_cleanup("test_files", [None, "1_x.pdf"]) == "job-1"
        assert enqueued == [("test_files", ["1_x.pdf"])]

    def test_schedule_skips_empty(self, monkeypatch):
        def fail(*args):
            raise AssertionError("nothing should be enqueued")

        monkeypatch.setattr("edutest.workers.queue.enqueue_blob_cleanup", fail)
        assert schedule_blob_cleanup("test_files", [None]) is None

    def test_schedule_runs_inline_without_redis(self, monkeypatch):
        def unreachable(bucket, paths):
            raise RedisConnectionError("connection refused")

        ran = []
        monkeypatch.setattr("edutest.workers.queue.enqueue_blob_cleanup", unreachable)
        monkeypatch.setattr(cleanup_tasks, "cleanup_blobs_task", lambda bucket, paths: ran.append((bucket, paths)))

        assert schedule_blob_cleanup("answer_images", ["a.jpg"]) is None
        assert ran == [("answer_images", ["a.jpg"])]
