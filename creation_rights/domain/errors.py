from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    path: str
    message: str


class FabricError(Exception):
    code = "fabric_error"


class NotFound(FabricError):
    code = "not_found"


class BlobNotFound(NotFound):
    code = "blob_not_found"

    def __init__(self, path: str):
        super().__init__(f"blob not found: {path}")
        self.path = path


class CreationNotFound(NotFound):
    code = "creation_not_found"


class ConversationNotFound(NotFound):
    code = "conversation_not_found"


class LicenseNotFound(NotFound):
    code = "license_not_found"


class ProfileNotFound(NotFound):
    code = "profile_not_found"


class ValidationError(FabricError):
    code = "validation_error"

    def __init__(self, issues: list[ValidationIssue]):
        super().__init__("; ".join(f"{i.path}: {i.message}" for i in issues) or self.code)
        self.issues = issues

    @classmethod
    def single(cls, code: str, path: str, message: str) -> "ValidationError":
        return cls([ValidationIssue(code=code, path=path, message=message)])


class UploadRejected(ValidationError):
    code = "upload_rejected"


class PaymentNotConfirmed(FabricError):
    code = "payment_not_confirmed"

    def __init__(self, transaction_id: str, status: str):
        super().__init__(f"payment {transaction_id} is not confirmed (status={status})")
        self.transaction_id = transaction_id
        self.status = status


class ScaffoldError(FabricError):
    code = "scaffold_error"


class StorageError(FabricError):
    code = "storage_error"


class TransientStorageError(StorageError):
    code = "storage_unavailable"


class CorruptDocument(StorageError):
    code = "corrupt_document"

    def __init__(self, path: str, reason: str):
        super().__init__(f"corrupt document at {path}: {reason}")
        self.path = path
