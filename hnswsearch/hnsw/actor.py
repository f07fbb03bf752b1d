"""
IndexActor - single point of access to one HNSW graph.

The actor owns its GraphStore on a dedicated worker thread. Callers submit
requests through a queue and wait on a future; requests run one at a time
and to completion, in arrival order. Nothing outside the worker thread holds
a reference to the store, so readers always see a settled graph.

Long batches block every other caller until they finish. A caller that
stops waiting (timeout) does not stop its request: the operation still runs
and its mutation is still applied.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, NamedTuple, Optional

from hnswsearch.errors import IndexClosed, UnsupportedRequest
from hnswsearch.hnsw.builder import GraphBuilder
from hnswsearch.hnsw.config import IndexConfig
from hnswsearch.hnsw.search import SearchEngine
from hnswsearch.hnsw.store import GraphStore, IndexStats

logger = logging.getLogger(__name__)


class Request(NamedTuple):
    op: str
    args: tuple
    future: Future


class IndexActor:
    """Serializes every operation on one GraphStore through a worker thread."""

    def __init__(self, config: IndexConfig, name: str = "hnsw-index"):
        self.config = config
        self._requests: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

        self._store: Optional[GraphStore] = None
        self._engine: Optional[SearchEngine] = None
        self._builder: Optional[GraphBuilder] = None

        ready: Future = Future()
        self._thread = threading.Thread(
            target=self._run, args=(ready,), name=name, daemon=True
        )
        self._thread.start()
        try:
            ready.result()
        except Exception:
            self._closed = True
            self._thread.join()
            raise

    # --- Caller side ---

    def submit(self, op: str, *args) -> Future:
        """Queue a request and return the future of its result."""
        with self._lock:
            if self._closed:
                raise IndexClosed("The index has been closed")
            future: Future = Future()
            self._requests.put(Request(op, args, future))
        return future

    def call(self, op: str, *args, timeout: Optional[float] = None) -> Any:
        """Submit a request and block until it completes.

        Raises the request's error, or concurrent.futures.TimeoutError if
        timeout elapses first (the request keeps running).
        """
        return self.submit(op, *args).result(timeout)

    def close(self) -> None:
        """Stop accepting requests, finish the queued ones and stop the thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._requests.put(None)
        self._thread.join()
        logger.info(f"Index actor {self._thread.name} stopped")

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Worker side ---

    def _run(self, ready: Future) -> None:
        try:
            self._store = GraphStore(self.config)
        except Exception as exc:
            ready.set_exception(exc)
            return
        self._engine = SearchEngine(self._store)
        self._builder = GraphBuilder(self._store, self._engine)
        ready.set_result(None)
        logger.info(
            f"Created {self.config.space.value} index: dim={self.config.dim}, "
            f"max_elements={self.config.max_elements}, m={self.config.m}, "
            f"ef_construction={self.config.effective_ef_construction}"
        )

        while True:
            request = self._requests.get()
            if request is None:
                break
            self._serve(request)

    def _serve(self, request: Request) -> None:
        if not request.future.set_running_or_notify_cancel():
            return
        handler = getattr(self, f"_handle_{request.op}", None)
        try:
            if handler is None:
                raise UnsupportedRequest(f"Unsupported request {request.op!r}")
            result = handler(*request.args)
        except Exception as exc:
            logger.debug(f"Request {request.op} failed: {exc}")
            request.future.set_exception(exc)
        else:
            request.future.set_result(result)

    # --- Handlers, run on the worker thread only ---

    def _handle_add_items(self, data, ids, num_threads: int, replace_deleted: bool) -> None:
        self._builder.add_items(data, ids, replace_deleted)

    def _handle_knn_query(self, data, k: int, num_threads: int, predicate):
        results = self._engine.knn_batch(data, k, num_threads, predicate)
        logger.debug(f"Answered {len(results)} queries with k={k}")
        return results

    def _handle_mark_deleted(self, label: int) -> None:
        self._store.mark_deleted(label)
        logger.debug(f"Marked {label} as deleted")

    def _handle_resize_index(self, new_size: int) -> None:
        self._store.resize(new_size)

    def _handle_get_max_elements(self) -> int:
        return self._store.max_elements

    def _handle_get_current_count(self) -> int:
        return self._store.count

    def _handle_get_deleted_count(self) -> int:
        return self._store.deleted_count

    def _handle_get_ids_list(self) -> list[int]:
        return self._store.ids()

    def _handle_get_items(self, labels: list[int]):
        return self._store.get_vectors(labels)

    def _handle_set_ef(self, ef: int) -> None:
        self._store.ef = ef

    def _handle_get_ef(self) -> int:
        return self._store.ef

    def _handle_get_stats(self) -> IndexStats:
        return self._store.stats()

    def _handle_check_integrity(self) -> None:
        self._store.check_integrity()
