"""Blob layout for every entity the fabric stores.

All functions are pure: the same logical key always maps to the same path.
Folder helpers always end with ``/`` so they can be used as listing prefixes
without ``CR-1`` also matching ``CR-10``.
"""

import re

PLACEHOLDER = ".keep"

_USER_KEY_RE = re.compile(r"[^a-z0-9]")
_SEGMENT_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_user_key(raw: str) -> str:
    """One-way user key: lowercase, every non-alphanumeric character becomes ``_``."""
    return _USER_KEY_RE.sub("_", (raw or "").lower())


def _seg(value: str) -> str:
    s = _SEGMENT_RE.sub("_", str(value or ""))
    if s in ("", ".", ".."):
        return "_"
    return s


def _u(user: str) -> str:
    return sanitize_user_key(user) or "_"


def folder(path: str) -> str:
    return path if path.endswith("/") else path + "/"


def placeholder(folder_path: str) -> str:
    return folder(folder_path) + PLACEHOLDER


def is_placeholder(path: str) -> bool:
    return path.rsplit("/", 1)[-1] == PLACEHOLDER


# -- users ------------------------------------------------------------------


def user_root(user: str) -> str:
    return f"users/{_u(user)}/"


def profile_folder(user: str) -> str:
    return f"{user_root(user)}profile/"


def profile_info(user: str) -> str:
    return f"{profile_folder(user)}info.json"


def profile_photo(user: str, ext: str) -> str:
    ext = _seg(ext.lstrip(".").lower()) if ext else "jpg"
    return f"{profile_folder(user)}photo.{ext}"


def folders_index(user: str) -> str:
    return f"folders/{_u(user)}.json"


def users_prefix() -> str:
    return "users/"


# -- creations --------------------------------------------------------------


def creations_root(user: str) -> str:
    return f"{user_root(user)}creations/"


def creations_metadata_folder(user: str) -> str:
    return f"{creations_root(user)}metadata/"


def creations_collection(user: str) -> str:
    return f"{creations_metadata_folder(user)}all.json"


def creation_mirrors_prefix(user: str) -> str:
    return f"{creations_root(user)}assets/"


def creation_mirror(user: str, creation_rights_id: str) -> str:
    return f"{creation_mirrors_prefix(user)}{_seg(creation_rights_id)}/metadata.json"


def user_scaffold(user: str) -> list[str]:
    return [
        placeholder(profile_folder(user)),
        placeholder(creations_root(user)),
        placeholder(creation_mirrors_prefix(user)),
        placeholder(creations_metadata_folder(user)),
    ]


# -- assets -----------------------------------------------------------------


def asset_folder(user: str, creation_rights_id: str) -> str:
    return f"Creations/{_u(user)}/{_seg(creation_rights_id)}/"


def asset_object(user: str, creation_rights_id: str) -> str:
    return f"{asset_folder(user, creation_rights_id)}file"


def asset_thumbnail(user: str, creation_rights_id: str) -> str:
    return f"{asset_folder(user, creation_rights_id)}thumbnail.jpg"


def asset_sidecar(user: str, creation_rights_id: str) -> str:
    return f"{asset_folder(user, creation_rights_id)}upload-metadata.json"


def asset_orphan_marker(user: str, creation_rights_id: str) -> str:
    return f"{asset_folder(user, creation_rights_id)}orphaned.json"


def asset_file(user: str, creation_rights_id: str, name: str) -> str:
    return f"{asset_folder(user, creation_rights_id)}{_seg(name)}"


def asset_scaffold(user: str, creation_rights_id: str) -> list[str]:
    return [
        placeholder(f"Creations/{_u(user)}/"),
        placeholder(asset_folder(user, creation_rights_id)),
    ]


# -- licenses ---------------------------------------------------------------


def creator_licenses_prefix(creator: str) -> str:
    return f"{creations_root(creator)}licenses/"


def creation_licenses_folder(creator: str, creation_rights_id: str) -> str:
    return f"{creator_licenses_prefix(creator)}{_seg(creation_rights_id)}/"


def license_record(creator: str, creation_rights_id: str, transaction_id: str) -> str:
    return f"{creation_licenses_folder(creator, creation_rights_id)}{_seg(transaction_id)}.json"


def license_scaffold(creator: str, creation_rights_id: str) -> list[str]:
    return [
        placeholder(creator_licenses_prefix(creator)),
        placeholder(creation_licenses_folder(creator, creation_rights_id)),
    ]


def purchaser_licenses_folder(purchaser: str) -> str:
    return f"{user_root(purchaser)}licenses/"


def purchaser_license(purchaser: str, transaction_id: str) -> str:
    return f"{purchaser_licenses_folder(purchaser)}{_seg(transaction_id)}.json"


def purchaser_scaffold(purchaser: str) -> list[str]:
    return [placeholder(purchaser_licenses_folder(purchaser))]


# -- chats ------------------------------------------------------------------


def chats_prefix() -> str:
    return "chats/"


def conversations_collection() -> str:
    return "chats/index.json"


def conversation_folder(conversation_id: str) -> str:
    return f"{chats_prefix()}{_seg(conversation_id)}/"


def conversation_mirror(conversation_id: str) -> str:
    return f"{conversation_folder(conversation_id)}chat.json"


def messages_collection(conversation_id: str) -> str:
    return f"{conversation_folder(conversation_id)}messages.json"


def messages_prefix(conversation_id: str) -> str:
    return f"{conversation_folder(conversation_id)}messages/"


def message_mirror(conversation_id: str, message_id: str) -> str:
    return f"{messages_prefix(conversation_id)}{_seg(message_id)}.json"


# -- replication ------------------------------------------------------------


def replication_prefix() -> str:
    return "system/replication/pending/"


def replication_pending(copy_id: str) -> str:
    return f"{replication_prefix()}{_seg(copy_id)}.json"


# -- http -------------------------------------------------------------------

_ASSET_PATH_RE = re.compile(r"^Creations/([^/]+)/([^/]+)/([^/]+)$")
_PHOTO_PATH_RE = re.compile(r"^users/([^/]+)/profile/(photo\.[^/]+)$")


def public_route(path: str) -> str | None:
    """API route that serves the object at ``path``, or None if none does."""
    m = _ASSET_PATH_RE.match(path)
    if m:
        user, crid, name = m.groups()
        if name == PLACEHOLDER:
            return None
        base = f"/api/users/{user}/uploads/{crid}"
        if name == "file":
            return f"{base}/download"
        if name == "thumbnail.jpg":
            return f"{base}/thumbnail"
        return f"{base}/files/{name}"
    m = _PHOTO_PATH_RE.match(path)
    if m:
        return f"/api/users/{m.group(1)}/profile-photo/{m.group(2)}"
    return None
