import os
import uuid
import queue
import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional, List, Callable, Iterator

from config.config_manager import get_cpu_count
from core.directory_scanner import normalize_path
from core.errors import DatabaseError, GlimpseError
from core.models import GenerationProgress, ImageInfo, ThumbnailResult
from core.rendermanager import RenderManager
from core.session_database import SessionDatabase
from core.thumbnail_generator import (
    PREVIEW_SIZE, THUMBNAIL_SIZE, ThumbnailGenerator, preview_filename, thumbnail_filename,
)
from plugins.base_plugin import PluginRegistry, create_default_registry

logger = logging.getLogger(__name__)

DEFAULT_STACK_SIZE = 8 * 1024 * 1024

ProgressCallback = Callable[[int, int], None]
CompleteCallback = Callable[[List[ThumbnailResult]], None]


@dataclass(frozen=True)
class GenerationConfig:
    """Parameters of one batch, resolved once when the batch is launched."""
    thread_count: int
    stack_size: int = DEFAULT_STACK_SIZE
    thumbnail_size: int = THUMBNAIL_SIZE
    preview_size: int = PREVIEW_SIZE
    check_mtime: bool = False

    @classmethod
    def from_config(cls, config_manager, cpu_count: Optional[int] = None) -> "GenerationConfig":
        cpus = cpu_count if cpu_count is not None else get_cpu_count()
        return cls(
            thread_count=max(1, config_manager.thumbnail_thread_count(cpus)),
            stack_size=int(config_manager.get("worker_stack_size", DEFAULT_STACK_SIZE)),
            thumbnail_size=int(config_manager.get("thumbnail_size", THUMBNAIL_SIZE)),
            preview_size=int(config_manager.get("preview_size", PREVIEW_SIZE)),
            check_mtime=bool(config_manager.get("cache.check_mtime", False)),
        )


class BatchHandle:
    """
    Live view of one running batch.

    ``progress()`` yields a GenerationProgress per finished file, in strictly
    increasing order, and stops after the last one. ``future`` resolves with
    one ThumbnailResult per input file, in input order.
    """

    def __init__(self, job_id: str, session_id: str, total: int):
        self.job_id = job_id
        self.session_id = session_id
        self.total = total
        self.future: Future = Future()
        # Running from creation: a batch cannot be cancelled once launched.
        self.future.set_running_or_notify_cancel()
        self._events: List[GenerationProgress] = []
        self._finished = False
        self._events_cond = threading.Condition()

    def progress(self) -> Iterator[GenerationProgress]:
        """Replay every event from the start, then follow live ones until the batch ends.

        Each call gets an independent stream, so it may be iterated more than
        once and by several readers.
        """
        index = 0
        while True:
            with self._events_cond:
                while index >= len(self._events) and not self._finished:
                    self._events_cond.wait()
                if index >= len(self._events):
                    return
                event = self._events[index]
            index += 1
            yield event

    def result(self, timeout: Optional[float] = None) -> List[ThumbnailResult]:
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()

    def _publish(self, event: Optional[GenerationProgress]):
        """Append *event*; None marks the end of the stream."""
        with self._events_cond:
            if event is None:
                self._finished = True
            else:
                self._events.append(event)
            self._events_cond.notify_all()


class ThumbnailManager:
    """Generates the cached thumbnails and previews of a session's files in parallel."""

    def __init__(self, config_manager, session_db: SessionDatabase,
                 registry: Optional[PluginRegistry] = None):
        self.config_manager = config_manager
        self.session_db = session_db
        self.registry = registry or create_default_registry()
        self.cache_root = os.path.join(config_manager.data_dir, "cache")
        os.makedirs(self.cache_root, exist_ok=True)
        self._active: dict = {}
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache layout
    # ------------------------------------------------------------------

    def get_session_cache_root(self, session_id: str) -> str:
        return os.path.join(self.cache_root, session_id)

    def get_cache_dir(self, session_id: str) -> str:
        return os.path.join(self.cache_root, session_id, "thumbnails")

    def get_preview_dir(self, session_id: str) -> str:
        return os.path.join(self.cache_root, session_id, "previews")

    def thumbnail_path_for(self, session_id: str, filename: str) -> str:
        return os.path.join(self.get_cache_dir(session_id), thumbnail_filename(filename))

    def preview_path_for(self, session_id: str, filename: str) -> str:
        return os.path.join(self.get_preview_dir(session_id), preview_filename(filename))

    def ensure_cache_dirs(self, session_id: str) -> str:
        """Create the session's thumbnail and preview directories; returns the thumbnail dir."""
        cache_dir = self.get_cache_dir(session_id)
        os.makedirs(cache_dir, exist_ok=True)
        os.makedirs(self.get_preview_dir(session_id), exist_ok=True)
        return cache_dir

    def get_cached_thumbnail(self, session_id: str, filename: str) -> Optional[str]:
        """Path of an existing thumbnail for *filename*, DB record first, then the layout path."""
        try:
            entry = self.session_db.get_thumbnail_cache(session_id, filename)
        except DatabaseError as e:
            logger.warning(f"Cache lookup failed for {filename}: {e}")
            entry = None
        if entry and os.path.exists(entry.cache_path):
            return normalize_path(entry.cache_path)
        path = self.thumbnail_path_for(session_id, filename)
        if os.path.exists(path):
            return normalize_path(path)
        return None

    # ------------------------------------------------------------------
    # Batch generation
    # ------------------------------------------------------------------

    def generation_config(self) -> GenerationConfig:
        return GenerationConfig.from_config(self.config_manager)

    def rebuild_preview(self, session_id: str, source_path: str) -> str:
        """Regenerate the preview of one RAW source if it is missing from the cache.

        Non-RAW sources raise InvalidPathError; decode failures propagate.
        """
        config = self.generation_config()
        generator = ThumbnailGenerator(self.registry, config.thumbnail_size, config.preview_size)
        filename = os.path.basename(source_path)
        preview_path = self.preview_path_for(session_id, filename)
        if generator.generate_preview(source_path, preview_path):
            logger.info(f"Rebuilt preview for {filename}")
            entry = self.session_db.get_thumbnail_cache(session_id, filename)
            if entry is not None:
                try:
                    self.session_db.set_thumbnail_cache(
                        session_id, filename, entry.cache_path,
                        original_modified=entry.original_modified,
                        preview_path=normalize_path(preview_path),
                    )
                except DatabaseError as e:
                    logger.warning(f"Could not record preview for {filename}: {e}")
        return normalize_path(preview_path)

    def generate_batch(self, session_id: str, images: List[ImageInfo],
                       on_progress: Optional[ProgressCallback] = None,
                       on_complete: Optional[CompleteCallback] = None,
                       config: Optional[GenerationConfig] = None) -> BatchHandle:
        """
        Launch generation for *images* and return immediately.

        At most ``config.thread_count`` files are processed at once. A file
        that fails yields a failed ThumbnailResult and never stops the batch.
        ``on_progress(completed, total)`` is called serially from a single
        consumer thread; ``on_complete(results)`` is called once, after the
        last progress call.
        """
        config = config or self.generation_config()
        images = list(images)
        total = len(images)
        handle = BatchHandle(uuid.uuid4().hex, session_id, total)
        if on_complete:
            handle.future.add_done_callback(lambda f: on_complete(f.result()))

        if total == 0:
            handle._publish(None)
            handle.future.set_result([])
            logger.debug(f"Empty batch for session {session_id[:8]}")
            return handle

        self.ensure_cache_dirs(session_id)
        generator = ThumbnailGenerator(self.registry, config.thumbnail_size, config.preview_size)
        results: List[Optional[ThumbnailResult]] = [None] * total
        done_signals: queue.Queue = queue.Queue()

        workers = RenderManager(num_workers=min(config.thread_count, total),
                                stack_size=config.stack_size,
                                name=f"ThumbWorker-{handle.job_id[:6]}")

        def _on_task_done(task_id: str, result: Optional[ThumbnailResult], error: Optional[BaseException]):
            index = int(task_id.rsplit(":", 1)[1])
            if result is None:
                reason = str(error) if error else "no result"
                result = ThumbnailResult.failed(images[index].filename, reason)
            results[index] = result
            done_signals.put(index)

        consumer = threading.Thread(
            target=self._consume_progress,
            args=(handle, done_signals, results, workers, on_progress),
            name=f"ThumbProgress-{handle.job_id[:6]}",
            daemon=True,
        )
        with self._active_lock:
            self._active[handle.job_id] = (handle, workers)

        logger.info(f"Generating thumbnails for {total} files in session {session_id[:8]} "
                    f"with {workers.num_workers} workers")
        workers.start()
        consumer.start()
        for index, image in enumerate(images):
            workers.submit_task(f"{handle.job_id}:{index}", self._generate_one,
                                session_id, image, generator, config.check_mtime,
                                callback=_on_task_done)
        return handle

    def _consume_progress(self, handle: BatchHandle, done_signals: queue.Queue,
                          results: List[Optional[ThumbnailResult]], workers: RenderManager,
                          on_progress: Optional[ProgressCallback]):
        completed = 0
        while completed < handle.total:
            done_signals.get()
            completed += 1
            handle._publish(GenerationProgress(completed, handle.total))
            if on_progress:
                try:
                    on_progress(completed, handle.total)
                except Exception as e:  # why: progress callbacks are caller-supplied; a failure must not stall the batch
                    logger.error(f"Progress callback failed: {e}", exc_info=True)
        handle._publish(None)

        workers.shutdown()
        with self._active_lock:
            self._active.pop(handle.job_id, None)

        failed = sum(1 for r in results if not r.success)
        logger.info(f"Batch {handle.job_id[:6]} finished: {handle.total - failed} ok, {failed} failed")
        handle.future.set_result(list(results))

    def _generate_one(self, session_id: str, image: ImageInfo,
                      generator: ThumbnailGenerator, check_mtime: bool) -> ThumbnailResult:
        thumbnail_path = self.thumbnail_path_for(session_id, image.filename)
        preview_path = self.preview_path_for(session_id, image.filename) if image.is_raw else None

        try:
            mtime = os.path.getmtime(image.path)
        except OSError:
            mtime = None

        existing = None
        try:
            existing = self.session_db.get_thumbnail_cache(session_id, image.filename)
        except DatabaseError as e:
            logger.warning(f"Cache lookup failed for {image.filename}: {e}")

        force = bool(check_mtime and existing and mtime is not None
                     and existing.original_modified is not None
                     and existing.original_modified != mtime)
        if force:
            logger.debug(f"Source changed since caching, regenerating: {image.filename}")

        try:
            assets = generator.generate_assets(image.path, thumbnail_path, preview_path, force=force)
        except (GlimpseError, OSError) as e:
            logger.error(f"Failed to generate thumbnail for {image.filename}: {e}")
            return ThumbnailResult.failed(image.filename, str(e))

        if assets.thumbnail_written or assets.preview_written or existing is None:
            try:
                self.session_db.set_thumbnail_cache(
                    session_id, image.filename, normalize_path(thumbnail_path),
                    original_modified=mtime,
                    preview_path=normalize_path(assets.preview_path) if assets.preview_path else None,
                )
            except DatabaseError as e:
                # The file on disk is authoritative; a missing row only costs a lookup.
                logger.warning(f"Could not record cache entry for {image.filename}: {e}")

        return ThumbnailResult(
            filename=image.filename,
            thumbnail_path=normalize_path(thumbnail_path),
            preview_path=normalize_path(assets.preview_path) if assets.preview_path else None,
            success=True,
        )

    def shutdown(self, timeout: float = 30.0):
        """Wait for running batches to drain their workers."""
        with self._active_lock:
            running = list(self._active.values())
        for handle, _ in running:
            try:
                handle.future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.warning(f"Batch {handle.job_id[:6]} still running at shutdown")
