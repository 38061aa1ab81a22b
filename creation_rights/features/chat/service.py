import logging
import uuid
from typing import Any

from creation_rights.domain.errors import BlobNotFound, ConversationNotFound, StorageError, ValidationError
from creation_rights.domain.models import Conversation, Message, Participant
from creation_rights.domain.results import OperationResult, ReplicationGap
from creation_rights.infra import paths
from creation_rights.infra.collection_store import CollectionStore, conversations_layout, messages_layout
from creation_rights.infra.replication import BLOB_COPY, ReplicationQueue, utc_now_iso
from creation_rights.infra.storage import BlobStore

logger = logging.getLogger(__name__)

# Conversations are owner-agnostic: one index for everybody.
_INDEX_OWNER = ""


def _norm(identity: str) -> str:
    return (identity or "").strip().lower()


class ConversationIndex:
    """Find-or-create conversations by participant set, plus per-message read tracking.

    The backing store has no unique constraint, so ``find_or_create`` is a
    scan followed by a create. Two concurrent callers can both miss and both
    create; ``merge_duplicates`` folds such pairs back into one conversation.
    """

    def __init__(self, blobs: BlobStore, queue: ReplicationQueue | None = None) -> None:
        self._blobs = blobs
        self._queue = queue
        self._conversations = CollectionStore(blobs, conversations_layout(), queue)
        self._messages = CollectionStore(blobs, messages_layout(), queue)

    def _all_conversations(self) -> list[Conversation]:
        """Index entries plus mirrors the index lost to a concurrent write."""
        by_id: dict[str, dict[str, Any]] = {str(c["id"]): c for c in self._conversations.read_all(_INDEX_OWNER)}
        for cid, mirrored in self._conversations.read_mirrors(_INDEX_OWNER).items():
            by_id[cid] = mirrored
        out: list[Conversation] = []
        for raw in by_id.values():
            try:
                out.append(Conversation.model_validate(raw))
            except ValueError as e:
                logger.warning("skipping malformed conversation %s: %s", raw.get("id"), e)
        return out

    def get_conversation(self, conversation_id: str) -> Conversation:
        raw = self._conversations.read_item(_INDEX_OWNER, conversation_id)
        if raw is None:
            raise ConversationNotFound(f"conversation {conversation_id} not found")
        return Conversation.model_validate(raw)

    def find(self, participants: list[Participant]) -> Conversation | None:
        wanted = frozenset(p.identity for p in participants)
        first = participants[0]
        key = first.uid or first.identity

        matches = [
            c
            for c in self._all_conversations()
            if (key in c.participant_ids or first.identity in c.participant_identities) and c.identity_set() == wanted
        ]
        if not matches:
            return None
        return min(matches, key=lambda c: (c.created_at, c.id))

    def find_or_create(self, participants: list[Participant | dict[str, Any]]) -> OperationResult:
        cleaned = self._sanitize(participants)
        existing = self.find(cleaned)
        if existing is not None:
            return OperationResult.from_gaps(existing.to_blob(), [], stage="found")

        first = cleaned[0]
        conversation = Conversation(
            id=uuid.uuid4().hex,
            participants=cleaned,
            participant_identities=[p.identity for p in cleaned],
            participant_ids=[p.uid for p in cleaned if p.uid],
            created_by=first.uid or first.identity,
            created_at=utc_now_iso(),
        )
        try:
            outcome = self._conversations.upsert(_INDEX_OWNER, conversation.to_blob())
        except StorageError as e:
            logger.error("creating conversation failed: %s", e)
            return OperationResult.failed(str(e), stage="scanned")
        logger.info("created conversation %s for %s", conversation.id, sorted(conversation.identity_set()))
        return OperationResult.from_gaps(outcome.item, outcome.gaps, stage="created")

    def _sanitize(self, participants: list[Participant | dict[str, Any]]) -> list[Participant]:
        cleaned: list[Participant] = []
        seen: set[str] = set()
        for raw in participants:
            p = raw if isinstance(raw, Participant) else Participant.model_validate(raw)
            p = p.sanitized()
            if not p.identity:
                raise ValidationError.single("missing_identity", "participants", "every participant needs an email or uid")
            if p.identity in seen:
                continue
            seen.add(p.identity)
            cleaned.append(p)
        if len(cleaned) < 2:
            raise ValidationError.single("too_few_participants", "participants", "at least two participants are required")
        return cleaned

    def _sender_identity(self, conversation: Conversation, sender: str) -> str:
        s = _norm(sender)
        if s in conversation.participant_identities:
            return s
        for p in conversation.participants:
            if p.uid and _norm(p.uid) == s:
                return p.identity
        raise ValidationError.single("not_a_participant", "sender", f"{sender} is not in conversation {conversation.id}")

    def send_message(self, conversation_id: str, sender: str, content: str) -> OperationResult:
        conversation = self.get_conversation(conversation_id)
        if not content or not content.strip():
            raise ValidationError.single("empty_message", "content", "message content is empty")
        identity = self._sender_identity(conversation, sender)

        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=conversation.id,
            sender=identity,
            content=content,
            timestamp=utc_now_iso(),
            read_by=[identity],
        )
        try:
            outcome = self._messages.upsert(conversation.id, message.to_blob())
        except StorageError as e:
            logger.error("message write to %s failed: %s", conversation.id, e)
            return OperationResult.failed(str(e), stage="validated")

        gaps = list(outcome.gaps)
        summary = conversation.model_copy(
            update={"last_message": message.content, "last_message_time": message.timestamp}
        )
        gaps.extend(self._write_summary(summary))
        return OperationResult.from_gaps(message.to_blob(), gaps, stage="complete")

    def _write_summary(self, conversation: Conversation) -> list[ReplicationGap]:
        try:
            outcome = self._conversations.upsert(_INDEX_OWNER, conversation.to_blob())
        except StorageError as e:
            # The summary is a cache of the message list.
            logger.warning("summary of conversation %s not updated: %s", conversation.id, e)
            target = paths.conversation_mirror(conversation.id)
            queued = False
            if self._queue is not None:
                queued = self._queue.enqueue(BLOB_COPY, conversation.to_blob(), target_path=target) is not None
            return [ReplicationGap(copy="conversation_summary", path=target, reason=str(e), queued=queued)]
        return outcome.gaps

    def list_messages(self, conversation_id: str) -> list[Message]:
        conversation = self.get_conversation(conversation_id)
        return self._read_messages(conversation.id)

    def _read_messages(self, conversation_id: str) -> list[Message]:
        raw = self._messages.read_all(conversation_id)
        messages = [Message.model_validate(m) for m in raw]
        return sorted(messages, key=lambda m: m.timestamp)

    def mark_read(self, conversation_id: str, participant: str) -> OperationResult:
        conversation = self.get_conversation(conversation_id)
        identity = self._sender_identity(conversation, participant)

        changed: list[dict[str, Any]] = []
        for m in self._read_messages(conversation.id):
            if m.is_unread_for(identity):
                changed.append(m.model_copy(update={"read_by": [*m.read_by, identity]}).to_blob())
        if not changed:
            return OperationResult.from_gaps({"updated": 0}, [], stage="complete")
        try:
            outcomes = self._messages.upsert_many(conversation.id, changed)
        except StorageError as e:
            return OperationResult.failed(str(e), stage="read")
        gaps = [g for o in outcomes for g in o.gaps]
        return OperationResult.from_gaps({"updated": len(changed)}, gaps, stage="complete")

    def list_conversations(self, participant: str) -> list[Conversation]:
        who = _norm(participant)
        mine = [
            c
            for c in self._all_conversations()
            if who in c.participant_identities or who in (_norm(u) for u in c.participant_ids)
        ]
        mine.sort(key=lambda c: c.created_at, reverse=True)
        mine.sort(key=lambda c: c.last_message_time or "", reverse=True)
        return mine

    def unread_count_for(self, conversation_id: str, participant: str) -> int:
        conversation = self.get_conversation(conversation_id)
        identity = self._sender_identity(conversation, participant)
        return sum(1 for m in self._read_messages(conversation.id) if m.is_unread_for(identity))

    def unread_count(self, participant: str) -> int:
        total = 0
        for c in self.list_conversations(participant):
            identity = self._sender_identity(c, participant)
            total += sum(1 for m in self._read_messages(c.id) if m.is_unread_for(identity))
        return total

    def merge_duplicates(self) -> list[dict[str, Any]]:
        """Fold conversations with the same participant set into the oldest one.

        Messages are copied into the survivor before a duplicate is deleted.
        """
        groups: dict[frozenset[str], list[Conversation]] = {}
        for c in self._all_conversations():
            groups.setdefault(c.identity_set(), []).append(c)

        report: list[dict[str, Any]] = []
        for group in groups.values():
            if len(group) < 2:
                continue
            group.sort(key=lambda c: (c.created_at, c.id))
            keep, duplicates = group[0], group[1:]

            rehomed: list[dict[str, Any]] = []
            participant_ids = list(keep.participant_ids)
            for dup in duplicates:
                for m in self._messages_with_mirrors(dup.id):
                    rehomed.append(m.model_copy(update={"conversation_id": keep.id}).to_blob())
                participant_ids.extend(u for u in dup.participant_ids if u not in participant_ids)
            if rehomed:
                self._messages.upsert_many(keep.id, rehomed)

            merged = self._read_messages(keep.id)
            last = merged[-1] if merged else None
            survivor = keep.model_copy(
                update={
                    "participant_ids": participant_ids,
                    "last_message": last.content if last else "",
                    "last_message_time": last.timestamp if last else None,
                }
            )
            self._conversations.upsert(_INDEX_OWNER, survivor.to_blob())

            for dup in duplicates:
                self._delete_conversation(dup.id)
            logger.info("merged %d duplicate conversation(s) into %s", len(duplicates), keep.id)
            report.append({"kept": keep.id, "removed": [d.id for d in duplicates], "messages_moved": len(rehomed)})
        return report

    def _messages_with_mirrors(self, conversation_id: str) -> list[Message]:
        by_id = {str(m["id"]): m for m in self._messages.read_all(conversation_id)}
        for mid, mirrored in self._messages.read_mirrors(conversation_id).items():
            by_id.setdefault(mid, mirrored)
        return sorted((Message.model_validate(m) for m in by_id.values()), key=lambda m: m.timestamp)

    def _delete_conversation(self, conversation_id: str) -> None:
        self._conversations.remove(_INDEX_OWNER, conversation_id)
        for name in self._blobs.list_by_prefix(paths.conversation_folder(conversation_id)):
            try:
                self._blobs.delete(name)
            except BlobNotFound:
                pass
