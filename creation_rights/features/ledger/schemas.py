from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from creation_rights.domain.enums import CreationType


class CreationMetadata(BaseModel):
    """Fields every creation's metadata must carry; extra keys are kept as-is."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    creation_rights_id: str = Field(min_length=1)
    rights_holders: list[str] | str

    @field_validator("rights_holders")
    @classmethod
    def _not_blank(cls, v: list[str] | str) -> list[str] | str:
        values = [v] if isinstance(v, str) else v
        if not any(s.strip() for s in values):
            raise ValueError("at least one rights holder is required")
        return v


class ImageMetadata(CreationMetadata):
    photographer: str = Field(min_length=1)


class TextMetadata(CreationMetadata):
    author: str = Field(min_length=1)


class AudioMetadata(CreationMetadata):
    artist: str = Field(min_length=1)


class VideoMetadata(CreationMetadata):
    creator: str = Field(min_length=1)


METADATA_SCHEMAS: dict[CreationType, type[CreationMetadata]] = {
    CreationType.image: ImageMetadata,
    CreationType.text: TextMetadata,
    CreationType.audio: AudioMetadata,
    CreationType.video: VideoMetadata,
    CreationType.other: CreationMetadata,
}
