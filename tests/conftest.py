import sys
from pathlib import Path
from typing import Callable

import pytest

# Ensure `import creation_rights...` works without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from creation_rights.domain.errors import StorageError  # noqa: E402
from creation_rights.infra.payments import PaymentConfirmation  # noqa: E402
from creation_rights.infra.storage import DEFAULT_CONTENT_TYPE, BlobInfo, LocalBlobStore  # noqa: E402


class FlakyBlobStore:
    """Wraps a store and raises for calls matching ``fail_on(op, path)``."""

    def __init__(self, inner: LocalBlobStore, error: type[StorageError] = StorageError) -> None:
        self.inner = inner
        self.error = error
        self.fail_on: Callable[[str, str], bool] = lambda op, path: False
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        if self.fail_on(op, path):
            raise self.error(f"injected {op} failure for {path}")

    def writes(self) -> list[str]:
        return [p for op, p in self.calls if op in ("put", "delete")]

    def get(self, path: str) -> bytes:
        self._maybe_fail("get", path)
        return self.inner.get(path)

    def put(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self._maybe_fail("put", path)
        self.inner.put(path, data, content_type)

    def exists(self, path: str) -> bool:
        self._maybe_fail("exists", path)
        return self.inner.exists(path)

    def delete(self, path: str) -> None:
        self._maybe_fail("delete", path)
        self.inner.delete(path)

    def list_by_prefix(self, prefix: str) -> list[str]:
        self._maybe_fail("list", prefix)
        return self.inner.list_by_prefix(prefix)

    def info(self, path: str) -> BlobInfo:
        self._maybe_fail("info", path)
        return self.inner.info(path)

    def public_url(self, path: str) -> str:
        return self.inner.public_url(path)


class FakePaymentProcessor:
    def __init__(self) -> None:
        self.payments: dict[str, PaymentConfirmation] = {}
        self.calls: list[str] = []

    def add(self, transaction_id: str, amount: int, currency: str = "usd", status: str = "succeeded") -> None:
        self.payments[transaction_id] = PaymentConfirmation(
            transaction_id=transaction_id, status=status, amount=amount, currency=currency
        )

    def confirm(self, transaction_id: str) -> PaymentConfirmation:
        self.calls.append(transaction_id)
        found = self.payments.get(transaction_id)
        if found is None:
            return PaymentConfirmation(transaction_id=transaction_id, status="not_found", amount=0, currency="")
        return found


@pytest.fixture
def blobs(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def flaky(blobs: LocalBlobStore) -> FlakyBlobStore:
    return FlakyBlobStore(blobs)


@pytest.fixture
def payments() -> FakePaymentProcessor:
    return FakePaymentProcessor()
