import logging
from typing import Any

from creation_rights.domain.enums import OutcomeStatus, UserType
from creation_rights.domain.errors import (
    BlobNotFound,
    NotFound,
    ProfileNotFound,
    StorageError,
    UploadRejected,
    ValidationError,
)
from creation_rights.domain.models import ProfileUpdate, UserProfile
from creation_rights.domain.results import OperationResult, ReplicationGap
from creation_rights.infra import paths
from creation_rights.infra.collection_store import CollectionStore, creations_layout
from creation_rights.infra.jsonblob import read_json, write_json
from creation_rights.infra.replication import BLOB_COPY, ReplicationQueue, utc_now_iso
from creation_rights.infra.storage import BlobStore
from creation_rights.infra.thumbnails import is_image

logger = logging.getLogger(__name__)

PHOTO_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def user_key(user_id: str | None, email: str | None) -> str:
    return paths.sanitize_user_key(email or "") or paths.sanitize_user_key(user_id or "")


class ProfileService:
    def __init__(self, blobs: BlobStore, queue: ReplicationQueue | None = None) -> None:
        self._blobs = blobs
        self._queue = queue
        self._creations = CollectionStore(blobs, creations_layout(), queue)

    def sign_in(
        self, *, user_id: str, email: str, name: str = "", user_type: UserType = UserType.creator
    ) -> tuple[UserProfile, bool]:
        """Called after the identity provider authenticated someone.

        Returns the profile and whether it was created by this call.
        """
        key = user_key(user_id, email)
        if not key:
            raise ValidationError.single("missing_identity", "email", "sign-in needs a user id or an email")
        self._creations.ensure_scaffold(key)
        self._creations.ensure_collection(key)
        try:
            return self.get_profile(key), False
        except ProfileNotFound:
            pass

        now = utc_now_iso()
        email = (email or "").strip().lower()
        profile = UserProfile(
            id=key,
            user_id=user_id,
            email=email,
            name=name or (email.split("@")[0] if email else key),
            user_type=user_type,
            created_at=now,
            updated_at=now,
        )
        write_json(self._blobs, paths.profile_info(key), profile.to_blob())
        logger.info("created profile %s", key)
        return profile, True

    def get_profile(self, user: str) -> UserProfile:
        try:
            raw = read_json(self._blobs, paths.profile_info(user))
        except BlobNotFound:
            raise ProfileNotFound(f"no profile for {user}")
        return UserProfile.model_validate(raw)

    def update_profile(self, user: str, update: ProfileUpdate) -> UserProfile:
        current = self.get_profile(user)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        merged = current.model_copy(update={**changes, "updated_at": utc_now_iso()})
        write_json(self._blobs, paths.profile_info(user), merged.to_blob())
        return merged

    def save_folders(self, user: str, folders: Any) -> None:
        write_json(self._blobs, paths.folders_index(user), folders)

    def load_folders(self, user: str) -> Any:
        try:
            return read_json(self._blobs, paths.folders_index(user))
        except BlobNotFound:
            raise NotFound(f"no folders for {user}")

    def upload_photo(self, user: str, data: bytes, content_type: str) -> OperationResult:
        ext = PHOTO_TYPES.get(content_type)
        if ext is None:
            raise UploadRejected.single("unsupported_media_type", "file", f"{content_type} is not an allowed photo type")
        if not is_image(data):
            raise UploadRejected.single("invalid_image", "file", "file is not a readable image")
        profile = self.get_profile(user)

        photo_path = paths.profile_photo(user, ext)
        try:
            self._blobs.put(photo_path, data, content_type)
        except StorageError as e:
            return OperationResult.failed(str(e), stage="photo_written")
        url = self._blobs.public_url(photo_path)

        updated = profile.model_copy(update={"photo_url": url, "updated_at": utc_now_iso()})
        info_path = paths.profile_info(user)
        gaps: list[ReplicationGap] = []
        try:
            write_json(self._blobs, info_path, updated.to_blob())
        except StorageError as e:
            logger.warning("profile photo stored but profile %s not updated: %s", user, e)
            queued = False
            if self._queue is not None:
                queued = self._queue.enqueue(BLOB_COPY, updated.to_blob(), target_path=info_path) is not None
            gaps.append(ReplicationGap(copy="profile_info", path=info_path, reason=str(e), queued=queued))
        result = OperationResult.from_gaps({"photoUrl": url}, gaps, stage="profile_updated")
        if result.status == OutcomeStatus.partial:
            logger.warning("profile photo upload for %s finished with %d gap(s)", user, len(gaps))
        return result

    def open_photo(self, user: str, name: str) -> tuple[bytes, str]:
        stem, _, ext = name.partition(".")
        if stem != "photo" or not ext:
            raise NotFound(f"no profile photo {name} for {user}")
        path = paths.profile_photo(user, ext)
        info = self._blobs.info(path)
        return self._blobs.get(path), info.content_type

    def search_profiles(self, query: str = "", user_type: UserType | None = None) -> list[UserProfile]:
        q = query.strip().lower()
        out: list[UserProfile] = []
        for name in self._blobs.list_by_prefix(paths.users_prefix()):
            if not name.endswith("/profile/info.json"):
                continue
            try:
                profile = UserProfile.model_validate(read_json(self._blobs, name))
            except (BlobNotFound, StorageError, ValueError) as e:
                logger.warning("skipping unreadable profile %s: %s", name, e)
                continue
            if user_type is not None and profile.user_type != user_type:
                continue
            if q and q not in profile.name.lower() and q not in profile.email.lower() and q not in profile.bio.lower():
                continue
            out.append(profile)
        return sorted(out, key=lambda p: (p.name.lower(), p.id))
