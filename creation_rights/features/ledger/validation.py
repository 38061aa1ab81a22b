from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from creation_rights.domain.errors import ValidationError, ValidationIssue
from creation_rights.domain.models import Creation, LicensePurchase
from creation_rights.features.ledger.schemas import METADATA_SCHEMAS


def _to_issues(e: PydanticValidationError, prefix: str = "") -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for err in e.errors():
        loc = [prefix] if prefix else []
        loc.extend(str(p) for p in err.get("loc") or [])
        issues.append(
            ValidationIssue(
                code=str(err.get("type") or "validation_error"),
                path=".".join(loc),
                message=str(err.get("msg") or "invalid"),
            )
        )
    return issues


def parse_creation(raw: dict[str, Any] | Creation) -> Creation:
    if isinstance(raw, Creation):
        return raw
    try:
        return Creation.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(_to_issues(e))


def parse_purchase(raw: dict[str, Any] | LicensePurchase) -> LicensePurchase:
    if isinstance(raw, LicensePurchase):
        return raw
    try:
        return LicensePurchase.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(_to_issues(e))


def validate_creation(creation: Creation) -> None:
    issues: list[ValidationIssue] = []
    if creation.creation_rights_id != creation.id:
        issues.append(
            ValidationIssue(
                code="creation_rights_id_mismatch",
                path="metadata.creationRightsId",
                message=f"must equal the creation id {creation.id!r}",
            )
        )
    try:
        METADATA_SCHEMAS[creation.type].model_validate(creation.metadata)
    except PydanticValidationError as e:
        issues.extend(_to_issues(e, prefix="metadata"))
    if creation.licensing_cost is not None and creation.licensing_cost < 0:
        issues.append(
            ValidationIssue(code="negative_cost", path="licensingCost", message="must be zero or more")
        )
    if issues:
        raise ValidationError(issues)
