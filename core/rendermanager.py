import threading
import logging
from dataclasses import dataclass, field
from queue import Queue, Empty
from typing import Callable, Any, Optional, Dict, List

logger = logging.getLogger(__name__)

_SHUTDOWN = "_SHUTDOWN_"

# threading.stack_size is process-wide; pools set, spawn and restore under this lock.
_stack_size_lock = threading.Lock()

TaskCallback = Callable[[str, Any, Optional[BaseException]], None]


@dataclass
class RenderTask:
    task_id: str
    func: Callable
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    callback: Optional[TaskCallback] = None


class RenderManager:
    """
    A fixed pool of worker threads pulling tasks from one FIFO queue.

    Workers are created with ``stack_size`` bytes of stack when given (RAW
    development runs deep native call chains). Every task's callback fires
    exactly once, on the worker thread, with either a result or the
    exception the task raised.
    """

    def __init__(self, num_workers: int = 4, stack_size: Optional[int] = None,
                 name: str = "RenderWorker"):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.num_workers = num_workers
        self.stack_size = stack_size
        self.name = name
        self._running = False
        self._shutting_down = threading.Event()
        self.task_queue: Queue = Queue()
        self.worker_threads: List[threading.Thread] = []

    def start(self):
        if self._running:
            return
        logger.info(f"RenderManager: Starting {self.num_workers} workers"
                    + (f" with {self.stack_size // 1024} KiB stacks." if self.stack_size else "."))
        self._running = True

        with _stack_size_lock:
            previous_stack_size = None
            if self.stack_size:
                try:
                    # threading.stack_size applies to threads created after the call
                    previous_stack_size = threading.stack_size(self.stack_size)
                except (ValueError, RuntimeError) as e:
                    logger.warning(f"RenderManager: cannot set worker stack size to {self.stack_size}: {e}")
            try:
                for i in range(self.num_workers):
                    worker = threading.Thread(target=self._worker_loop, args=(i,), daemon=True)
                    worker.name = f"{self.name}-{i}"
                    self.worker_threads.append(worker)
                    worker.start()
            finally:
                if previous_stack_size is not None:
                    threading.stack_size(previous_stack_size)

    def submit_task(self, task_id: str, func: Callable, *args,
                    callback: Optional[TaskCallback] = None, **kwargs) -> bool:
        """Queue *func* for execution. Returns False once shutdown has begun."""
        if self._shutting_down.is_set():
            logger.warning(f"RenderManager shutting down. Rejecting task '{task_id}'.")
            return False
        task = RenderTask(task_id=task_id, func=func, args=args, kwargs=kwargs,
                          callback=callback)
        self.task_queue.put(task)
        return True

    def _worker_loop(self, worker_id: int):
        thread_name = threading.current_thread().name
        logger.debug(f"RenderManager: Worker {worker_id} ({thread_name}) started.")
        while self._running:
            task: Optional[RenderTask] = None
            try:
                task = self.task_queue.get(timeout=0.2)
                if task.task_id == _SHUTDOWN:
                    logger.debug(f"RenderManager: Worker {worker_id} ({thread_name}) received shutdown sentinel. Exiting.")
                    break

                self._execute_task(task)

            except Empty:
                continue
            except Exception as e:  # why: worker loop guard; unexpected exceptions must not kill the thread
                logger.error(f"RenderManager: Worker {worker_id} ({thread_name}) encountered general error: {e}", exc_info=True)
            finally:
                if task:
                    self.task_queue.task_done()

    def _execute_task(self, task: RenderTask):
        result, error = None, None
        try:
            result = task.func(*task.args, **task.kwargs)
        except Exception as e:  # why: task func is arbitrary decoder code; exceptions reach the callback without killing the worker
            error = e
            logger.error(f"Task '{task.task_id}' failed: {e}", exc_info=True)
        finally:
            if task.callback:
                try:
                    task.callback(task.task_id, result, error)
                except Exception as e:  # why: callbacks are caller-supplied; one failure must not take down the worker
                    logger.error(f"RenderManager: Callback for task '{task.task_id}' failed: {e}", exc_info=True)

    def shutdown(self, timeout: float = 30.0):
        """
        Stop accepting tasks, let queued and running tasks finish, then join
        the workers. Blocking; must not be called from a worker thread.
        """
        if not self._running and not self.worker_threads:
            logger.debug("RenderManager: Already shut down.")
            return

        self._shutting_down.set()
        # Sentinels queue behind pending work, so everything submitted runs first.
        for _ in range(self.num_workers):
            self.task_queue.put(RenderTask(task_id=_SHUTDOWN, func=lambda: None))

        for i, worker in enumerate(self.worker_threads):
            worker.join(timeout)
            if worker.is_alive():
                logger.warning(f"RenderManager: Worker {i} did not stop gracefully within timeout.")

        self._running = False
        self.worker_threads.clear()
        logger.debug("RenderManager: Shutdown complete.")
