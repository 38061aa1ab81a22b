import logging
import random
import string
import time
import uuid
from typing import Any

from creation_rights.domain.enums import AnomalyKind, CreationStatus, LicenseStage, LicenseStatus
from creation_rights.domain.errors import (
    BlobNotFound,
    CorruptDocument,
    CreationNotFound,
    LicenseNotFound,
    PaymentNotConfirmed,
    ScaffoldError,
    StorageError,
    ValidationError,
    ValidationIssue,
)
from creation_rights.domain.models import Creation, License, LicensePurchase
from creation_rights.domain.results import ConcurrencyAnomaly, OperationResult, ReplicationGap
from creation_rights.features.ledger.validation import parse_creation, parse_purchase, validate_creation
from creation_rights.infra import paths
from creation_rights.infra.collection_store import CollectionStore, creations_layout, ensure_placeholders
from creation_rights.infra.jsonblob import read_json, write_json
from creation_rights.infra.payments import PaymentConfirmation, PaymentProcessor
from creation_rights.infra.replication import PendingCopy, ReplayReport, ReplicationQueue, utc_now_iso
from creation_rights.infra.storage import BlobStore

logger = logging.getLogger(__name__)

EMBED_LICENSE = "embed_license"
PURCHASER_LICENSE = "purchaser_license"

Item = dict[str, Any]


def generate_creation_rights_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"CR-{int(time.time() * 1000)}-{suffix}"


def _rights_id(item: Item) -> str:
    meta = item.get("metadata") or {}
    return str(meta.get("creationRightsId") or item.get("id") or "")


class RightsLedger:
    """Creations and the three copies of every license.

    A license lives under the creator (canonical), under the purchaser, and
    embedded in the creator's aggregate creation record. Only the canonical
    write can fail the operation; the other two become replication gaps.
    """

    def __init__(
        self,
        blobs: BlobStore,
        payments: PaymentProcessor,
        queue: ReplicationQueue | None = None,
    ) -> None:
        self._blobs = blobs
        self._payments = payments
        self._queue = queue
        self._creations = CollectionStore(blobs, creations_layout(), queue)

    # -- creations ----------------------------------------------------------

    def save_creation(self, owner: str, raw: Item | Creation) -> OperationResult:
        creation = parse_creation(raw)
        validate_creation(creation)
        self._creations.ensure_scaffold(owner)

        try:
            existing = self._find_in_aggregate(owner, creation.id)
        except StorageError as e:
            return OperationResult.failed(str(e), stage="validated")

        now = utc_now_iso()
        update: dict[str, Any] = {"owner": owner, "updated_at": now}
        if existing is not None:
            # Embedded licenses are written by record_license only.
            update["licenses"] = list(existing.get("licenses") or [])
            update["created_at"] = existing.get("createdAt") or creation.created_at or now
        else:
            update["created_at"] = creation.created_at or now
        item = creation.model_copy(update=update).to_blob()

        try:
            outcome = self._creations.upsert(owner, item)
        except StorageError as e:
            logger.error("saving creation %s for %s failed: %s", creation.id, owner, e)
            return OperationResult.failed(str(e), stage="validated")
        return OperationResult.from_gaps(outcome.item, outcome.gaps, stage="complete")

    def list_creations(self, owner: str) -> list[Item]:
        return self._creations.read_all(owner)

    def find_creation(self, owner: str, creation_id: str) -> Item | None:
        """Mirror first, then a scan of the aggregate by id or creationRightsId."""
        item = self._creations.read_item(owner, creation_id)
        if item is not None:
            return item
        for candidate in self._creations.read_all(owner):
            if _rights_id(candidate) == creation_id:
                return candidate
        return None

    def get_creation(self, owner: str, creation_id: str) -> Item:
        item = self.find_creation(owner, creation_id)
        if item is None:
            raise CreationNotFound(f"creation {creation_id} not found for {owner}")
        return item

    def delete_creation(self, owner: str, creation_id: str) -> OperationResult:
        item = self.get_creation(owner, creation_id)
        try:
            outcome = self._creations.remove(owner, str(item["id"]))
        except StorageError as e:
            return OperationResult.failed(str(e), stage="found")
        return OperationResult.from_gaps({"id": item["id"]}, outcome.gaps, stage="complete")

    def list_published(self) -> list[Item]:
        out: list[Item] = []
        for name in self._blobs.list_by_prefix(paths.users_prefix()):
            if not name.endswith("/creations/metadata/all.json"):
                continue
            owner = name.split("/")[1]
            try:
                items = read_json(self._blobs, name)
            except (BlobNotFound, CorruptDocument) as e:
                logger.warning("skipping unreadable collection %s: %s", name, e)
                continue
            if not isinstance(items, list):
                logger.warning("skipping collection %s: not a JSON array", name)
                continue
            for item in items:
                if isinstance(item, dict) and item.get("status") == CreationStatus.published.value:
                    out.append({**item, "owner": item.get("owner") or owner})
        return out

    def verify_creations(self, owner: str) -> list[ConcurrencyAnomaly]:
        return self._creations.verify(owner)

    def rebuild_creations(self, owner: str) -> list[Item]:
        return self._creations.rebuild_from_mirrors(owner)

    def _find_in_aggregate(self, owner: str, creation_id: str) -> Item | None:
        for item in self._creations.read_all(owner):
            if item.get("id") == creation_id or _rights_id(item) == creation_id:
                return item
        return None

    # -- licenses -----------------------------------------------------------

    def _confirm(self, purchase: LicensePurchase) -> PaymentConfirmation:
        confirmation = self._payments.confirm(purchase.transaction_id)
        if not confirmation.succeeded:
            logger.info("payment %s not confirmed: %s", purchase.transaction_id, confirmation.status)
            raise PaymentNotConfirmed(purchase.transaction_id, confirmation.status)

        issues: list[ValidationIssue] = []
        if purchase.amount is not None and purchase.amount != confirmation.amount:
            issues.append(
                ValidationIssue(
                    code="amount_mismatch",
                    path="amount",
                    message=f"payment confirmed {confirmation.amount}, purchase says {purchase.amount}",
                )
            )
        if purchase.currency and confirmation.currency and purchase.currency.lower() != confirmation.currency:
            issues.append(
                ValidationIssue(
                    code="currency_mismatch",
                    path="currency",
                    message=f"payment confirmed {confirmation.currency}, purchase says {purchase.currency}",
                )
            )
        if issues:
            raise ValidationError(issues)
        return confirmation

    def _read_license(self, path: str) -> License | None:
        try:
            return License.model_validate(read_json(self._blobs, path))
        except BlobNotFound:
            return None

    def record_license(self, raw: Item | LicensePurchase) -> OperationResult:
        purchase = parse_purchase(raw)

        confirmation = self._confirm(purchase)
        stage = LicenseStage.payment_confirmed

        creator = purchase.creator
        creation = self.find_creation(creator, purchase.creation_id)
        if creation is None:
            raise CreationNotFound(f"creation {purchase.creation_id} not found for {creator}")
        crid = _rights_id(creation)
        if purchase.creation_rights_id and purchase.creation_rights_id != crid:
            raise ValidationError.single(
                "creation_rights_id_mismatch",
                "creationRightsId",
                f"creation {purchase.creation_id} has creationRightsId {crid}, not {purchase.creation_rights_id}",
            )

        canonical_path = paths.license_record(creator, crid, purchase.transaction_id)
        try:
            previous = self._read_license(canonical_path)
        except StorageError as e:
            return OperationResult.failed(str(e), stage=stage.value)

        license = License(
            id=previous.id if previous else f"license_{uuid.uuid4().hex}",
            creation_id=str(creation["id"]),
            creation_rights_id=crid,
            payment_intent_id=purchase.transaction_id,
            amount=confirmation.amount,
            currency=confirmation.currency or (purchase.currency or "").lower(),
            purchaser_email=purchase.purchaser_email.strip().lower(),
            creator=creator,
            status=LicenseStatus.active,
            timestamp=previous.timestamp if previous else (purchase.timestamp or utc_now_iso()),
        )

        ensure_placeholders(self._blobs, paths.license_scaffold(creator, crid))
        try:
            write_json(self._blobs, canonical_path, license.to_blob())
        except StorageError as e:
            logger.error("canonical license write failed for %s: %s", purchase.transaction_id, e)
            return OperationResult.failed(str(e), stage=stage.value)
        logger.info("recorded license %s for %s/%s", license.id, creator, crid)

        gaps = self._write_purchaser_copy(license, canonical_path)
        gaps.extend(self._embed_or_queue(creator, license, canonical_path))
        stage = LicenseStage.complete
        if gaps:
            logger.warning("license %s recorded with %d replication gap(s)", license.id, len(gaps))
        return OperationResult.from_gaps(license.to_blob(), gaps, stage=stage.value)

    def revoke_license(self, creator: str, creation_id: str, transaction_id: str) -> OperationResult:
        crid = self._resolve_rights_id(creator, creation_id)
        canonical_path = paths.license_record(creator, crid, transaction_id)
        current = self._read_license(canonical_path)
        if current is None:
            raise LicenseNotFound(f"no license for transaction {transaction_id} on {creation_id}")

        revoked = current.model_copy(update={"status": LicenseStatus.revoked})
        try:
            write_json(self._blobs, canonical_path, revoked.to_blob())
        except StorageError as e:
            return OperationResult.failed(str(e), stage="found")
        gaps = self._write_purchaser_copy(revoked, canonical_path)
        gaps.extend(self._embed_or_queue(creator, revoked, canonical_path))
        return OperationResult.from_gaps(revoked.to_blob(), gaps, stage="complete")

    # Queued license copies carry only the canonical path; replay copies
    # whatever the canonical record says at that time.

    def _put_purchaser_copy(self, license: License) -> None:
        target = paths.purchaser_license(license.purchaser_email, license.payment_intent_id)
        ensure_placeholders(self._blobs, paths.purchaser_scaffold(license.purchaser_email))
        write_json(self._blobs, target, license.to_blob())

    def _write_purchaser_copy(self, license: License, canonical_path: str) -> list[ReplicationGap]:
        target = paths.purchaser_license(license.purchaser_email, license.payment_intent_id)
        try:
            self._put_purchaser_copy(license)
        except (ScaffoldError, StorageError) as e:
            logger.warning("purchaser copy of %s not written: %s", license.id, e)
            queued = False
            if self._queue is not None:
                payload = {"canonicalPath": canonical_path}
                queued = self._queue.enqueue(PURCHASER_LICENSE, payload, target_path=target) is not None
            return [ReplicationGap(copy="purchaser_license", path=target, reason=str(e), queued=queued)]
        return []

    def _embed_or_queue(self, creator: str, license: License, canonical_path: str) -> list[ReplicationGap]:
        aggregate = paths.creations_collection(creator)
        try:
            return self._embed(creator, license)
        except (StorageError, CreationNotFound) as e:
            logger.warning("license %s not embedded in %s: %s", license.id, aggregate, e)
            queued = False
            if self._queue is not None:
                payload = {"creator": creator, "canonicalPath": canonical_path}
                queued = (
                    self._queue.enqueue(EMBED_LICENSE, payload, target_path=aggregate, key=canonical_path)
                    is not None
                )
            return [ReplicationGap(copy="embedded_license", path=aggregate, reason=str(e), queued=queued)]

    def _embed(self, creator: str, license: License) -> list[ReplicationGap]:
        """Replace-or-append the license summary in the creation's ``licenses`` array."""
        item = self._find_in_aggregate(creator, license.creation_id)
        if item is None:
            item = self.find_creation(creator, license.creation_id)
        if item is None:
            raise CreationNotFound(f"creation {license.creation_id} not found for {creator}")

        summary = license.embedded()
        licenses = [dict(x) for x in item.get("licenses") or []]
        for n, existing in enumerate(licenses):
            if existing.get("paymentIntentId") == license.payment_intent_id:
                licenses[n] = summary
                break
        else:
            licenses.append(summary)
        outcome = self._creations.upsert(creator, {**item, "licenses": licenses})
        return outcome.gaps

    def _canonical_for(self, pending: PendingCopy) -> License | None:
        canonical_path = str(pending.payload.get("canonicalPath") or "")
        if not canonical_path:
            raise StorageError(f"pending copy {pending.id} has no canonical path")
        license = self._read_license(canonical_path)
        if license is None:
            logger.warning("pending copy %s dropped: %s no longer exists", pending.id, canonical_path)
        return license

    def _replay_purchaser_copy(self, pending: PendingCopy) -> bool:
        license = self._canonical_for(pending)
        if license is None:
            return False
        self._put_purchaser_copy(license)
        return True

    def _replay_embed(self, pending: PendingCopy) -> bool:
        license = self._canonical_for(pending)
        if license is None:
            return False
        self._embed(str(pending.payload["creator"]), license)
        return True

    def replay_gaps(self) -> ReplayReport:
        if self._queue is None:
            return ReplayReport(applied=[], failed=[])
        return self._queue.replay(
            {PURCHASER_LICENSE: self._replay_purchaser_copy, EMBED_LICENSE: self._replay_embed}
        )

    def _resolve_rights_id(self, creator: str, creation_id: str) -> str:
        """creationRightsId for a creation id; legacy records may use a different one."""
        item = self._find_in_aggregate(creator, creation_id)
        return _rights_id(item) if item else creation_id

    def _list_license_blobs(self, prefix: str) -> list[Item]:
        out: list[Item] = []
        for name in self._blobs.list_by_prefix(prefix):
            if paths.is_placeholder(name) or not name.endswith(".json"):
                continue
            try:
                doc = read_json(self._blobs, name)
            except (BlobNotFound, CorruptDocument) as e:
                logger.warning("skipping unreadable license %s: %s", name, e)
                continue
            if isinstance(doc, dict):
                out.append(doc)
        return sorted(out, key=lambda d: (str(d.get("timestamp") or ""), str(d.get("id") or "")))

    def list_licenses_for_creation(self, creator: str, creation_id: str) -> list[Item]:
        crid = self._resolve_rights_id(creator, creation_id)
        return self._list_license_blobs(paths.creation_licenses_folder(creator, crid))

    def list_licenses(self, owner: str) -> list[Item]:
        """Licenses ``owner`` bought (the purchaser-side copies)."""
        return self._list_license_blobs(paths.purchaser_licenses_folder(owner))

    def list_creator_licenses(self, creator: str) -> list[Item]:
        return self._list_license_blobs(paths.creator_licenses_prefix(creator))

    def audit_licenses(self, creator: str, creation_id: str) -> list[ConcurrencyAnomaly]:
        """Compare the three copies of each license of one creation. Read-only."""
        item = self._find_in_aggregate(creator, creation_id)
        crid = _rights_id(item) if item else creation_id
        embedded = {str(e.get("paymentIntentId")): e for e in (item or {}).get("licenses") or []}
        aggregate = paths.creations_collection(creator)

        anomalies: list[ConcurrencyAnomaly] = []
        seen: set[str] = set()
        for doc in self.list_licenses_for_creation(creator, creation_id):
            lic = License.model_validate(doc)
            tx = lic.payment_intent_id
            seen.add(tx)
            expected = (lic.amount, lic.currency, lic.status.value)

            mirror_path = paths.purchaser_license(lic.purchaser_email, tx)
            try:
                mirror = read_json(self._blobs, mirror_path)
            except BlobNotFound:
                mirror = None
            if mirror is None:
                anomalies.append(ConcurrencyAnomaly(AnomalyKind.missing_copy, tx, mirror_path, "purchaser copy"))
            elif (mirror.get("amount"), mirror.get("currency"), mirror.get("status")) != expected:
                anomalies.append(ConcurrencyAnomaly(AnomalyKind.diverged, tx, mirror_path, "purchaser copy"))

            summary = embedded.get(tx)
            if summary is None:
                anomalies.append(ConcurrencyAnomaly(AnomalyKind.missing_copy, tx, aggregate, "embedded copy"))
            elif (summary.get("amount"), summary.get("currency"), summary.get("status")) != expected:
                anomalies.append(ConcurrencyAnomaly(AnomalyKind.diverged, tx, aggregate, "embedded copy"))

        for tx in sorted(set(embedded) - seen):
            anomalies.append(
                ConcurrencyAnomaly(
                    AnomalyKind.missing_copy,
                    tx,
                    paths.license_record(creator, crid, tx),
                    "canonical record",
                )
            )
        return anomalies
