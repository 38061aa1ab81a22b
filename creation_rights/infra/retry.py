import logging
import random
import time
from typing import Callable, TypeVar

from creation_rights.domain.errors import TransientStorageError
from creation_rights.infra.storage import DEFAULT_CONTENT_TYPE, BlobInfo, BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retries(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.2,
    retry_on: tuple[type[BaseException], ...] = (TransientStorageError,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """Run an idempotent call, backing off exponentially between failed attempts.

    Only exceptions listed in ``retry_on`` are retried; the last one is re-raised
    once ``attempts`` is exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except retry_on as e:
            if attempt + 1 >= attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, e)
                raise
            delay = base_delay * (2**attempt) * random.uniform(0.9, 1.1)
            logger.warning("%s attempt %d failed, retrying in %.2fs: %s", label, attempt + 1, delay, e)
            sleep(delay)
    raise RuntimeError("unreachable")


class RetryingBlobStore:
    """Wraps a BlobStore so each single call is retried on transient failures.

    Every BlobStore call is idempotent on its own (reads, existence checks and
    overwrites keyed by a stable path). Multi-step sequences built on top of
    this store are never replayed as a whole.
    """

    def __init__(
        self,
        inner: BlobStore,
        *,
        attempts: int = 3,
        base_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._inner = inner
        self._attempts = attempts
        self._base_delay = base_delay
        self._sleep = sleep

    def _run(self, label: str, fn: Callable[[], T]) -> T:
        return call_with_retries(
            fn, attempts=self._attempts, base_delay=self._base_delay, sleep=self._sleep, label=label
        )

    def get(self, path: str) -> bytes:
        return self._run(f"get {path}", lambda: self._inner.get(path))

    def put(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self._run(f"put {path}", lambda: self._inner.put(path, data, content_type))

    def exists(self, path: str) -> bool:
        return self._run(f"exists {path}", lambda: self._inner.exists(path))

    def delete(self, path: str) -> None:
        self._run(f"delete {path}", lambda: self._inner.delete(path))

    def list_by_prefix(self, prefix: str) -> list[str]:
        return self._run(f"list {prefix}", lambda: self._inner.list_by_prefix(prefix))

    def info(self, path: str) -> BlobInfo:
        return self._run(f"info {path}", lambda: self._inner.info(path))

    def public_url(self, path: str) -> str:
        return self._inner.public_url(path)
