from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from creation_rights.domain.enums import (
    CreationStatus,
    CreationType,
    LicenseStatus,
    UserType,
)

_TYPE_ALIASES: dict[str, CreationType] = {
    "image": CreationType.image,
    "photography": CreationType.image,
    "photo": CreationType.image,
    "text": CreationType.text,
    "literature": CreationType.text,
    "writing": CreationType.text,
    "music": CreationType.audio,
    "audio": CreationType.audio,
    "sound": CreationType.audio,
    "video": CreationType.video,
    "film": CreationType.video,
}


def coerce_creation_type(raw: Any) -> CreationType:
    if isinstance(raw, CreationType):
        return raw
    return _TYPE_ALIASES.get(str(raw or "").strip().lower(), CreationType.other)


class Document(BaseModel):
    """Base for JSON documents persisted as blobs (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UserProfile(Document):
    id: str
    user_id: str = ""
    email: str = ""
    name: str = ""
    bio: str = ""
    photo_url: str | None = None
    social_links: dict[str, str] = Field(default_factory=dict)
    user_type: UserType = UserType.creator
    created_at: str | None = None
    updated_at: str | None = None


class ProfileUpdate(Document):
    name: str | None = None
    bio: str | None = None
    photo_url: str | None = None
    social_links: dict[str, str] | None = None
    user_type: UserType | None = None


class Creation(Document):
    id: str = Field(min_length=1)
    owner: str | None = None
    title: str = ""
    type: CreationType = CreationType.other
    status: CreationStatus = CreationStatus.draft
    licensing_cost: Decimal | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    licenses: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _alias_type(cls, v: Any) -> CreationType:
        return coerce_creation_type(v)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for t in v:
            t = t.strip()
            if t and t not in seen:
                seen.append(t)
        return seen

    @property
    def creation_rights_id(self) -> str | None:
        crid = self.metadata.get("creationRightsId")
        return str(crid) if crid else None


class License(Document):
    id: str
    creation_id: str
    creation_rights_id: str
    payment_intent_id: str
    amount: int
    currency: str
    purchaser_email: str
    creator: str
    status: LicenseStatus = LicenseStatus.active
    timestamp: str

    def embedded(self) -> dict[str, Any]:
        """Summary kept inside the owning Creation's ``licenses`` array."""
        return {
            "id": self.id,
            "paymentIntentId": self.payment_intent_id,
            "purchaserEmail": self.purchaser_email,
            "amount": self.amount,
            "currency": self.currency,
            "timestamp": self.timestamp,
            "status": self.status.value,
        }


class LicensePurchase(Document):
    creation_id: str = Field(min_length=1)
    creation_rights_id: str | None = None
    transaction_id: str = Field(min_length=1)
    creator: str = Field(min_length=1)
    purchaser_email: str = Field(min_length=3)
    amount: int | None = Field(default=None, ge=0)
    currency: str | None = None
    timestamp: str | None = None


class Participant(Document):
    uid: str = ""
    email: str = ""
    name: str = ""

    @property
    def identity(self) -> str:
        return (self.email or self.uid).strip().lower()

    def sanitized(self) -> "Participant":
        email = self.email.strip().lower()
        name = self.name or (email.split("@")[0] if email else "User")
        return Participant(uid=self.uid.strip(), email=email, name=name)


class Conversation(Document):
    id: str
    participants: list[Participant]
    participant_identities: list[str]
    participant_ids: list[str] = Field(default_factory=list)
    created_by: str
    created_at: str
    last_message: str = ""
    last_message_time: str | None = None

    def identity_set(self) -> frozenset[str]:
        return frozenset(self.participant_identities)


class Message(Document):
    id: str
    conversation_id: str
    sender: str
    content: str
    timestamp: str
    read_by: list[str] = Field(default_factory=list)

    def is_unread_for(self, identity: str) -> bool:
        return self.sender != identity and identity not in self.read_by
