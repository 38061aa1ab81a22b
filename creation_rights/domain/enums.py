from enum import Enum


class UserType(str, Enum):
    creator = "creator"
    agency = "agency"


class CreationType(str, Enum):
    image = "Image"
    text = "Text"
    audio = "Audio"
    video = "Video"
    other = "Other"


class CreationStatus(str, Enum):
    draft = "draft"
    published = "published"


class LicenseStatus(str, Enum):
    active = "active"
    revoked = "revoked"


class OutcomeStatus(str, Enum):
    succeeded = "succeeded"
    partial = "partial"
    failed = "failed"


class LicenseStage(str, Enum):
    payment_confirmed = "payment_confirmed"
    complete = "complete"


class UploadState(str, Enum):
    received = "received"
    scaffold_ensured = "scaffold_ensured"
    content_written = "content_written"
    sidecar_written = "sidecar_written"
    complete = "complete"


class AnomalyKind(str, Enum):
    missing_mirror = "missing_mirror"
    missing_from_aggregate = "missing_from_aggregate"
    diverged = "diverged"
    missing_copy = "missing_copy"
