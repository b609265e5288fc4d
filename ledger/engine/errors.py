"""
Ledger Error Taxonomy

Every failure aborts the whole atomic unit and surfaces as one of these.
Storage failures keep their own hierarchy (ledger.services.storage.StorageError)
and are propagated unchanged.
"""

from typing import Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ledger.models.ledger import ValidationIssue

ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerError(Exception):
    """Base exception for ledger operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LedgerError):
    """Malformed or out-of-range input. Raised before any write."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        issues = issues or []
        super().__init__(
            message,
            details={"issues": [issue.model_dump() for issue in issues]},
        )
        self.issues = issues

    @classmethod
    def single(cls, field: str, issue_type: str, message: str) -> "ValidationError":
        return cls(
            message,
            [ValidationIssue(field=field, issue_type=issue_type, message=message)],
        )

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> "ValidationError":
        """Re-express a pydantic error as ledger validation issues."""
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in err["loc"]) or "model",
                issue_type=err["type"],
                message=err["msg"],
            )
            for err in error.errors()
        ]
        return cls("; ".join(issue.message for issue in issues), issues)


def build_model(model_cls: type[ModelT], data: dict) -> ModelT:
    """Validate caller data into a model, reporting failures as ValidationError."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def editable_changes(
    model_cls: type[BaseModel],
    changes: dict,
    protected: frozenset[str],
) -> dict:
    """
    Caller changes keyed by field name, without the protected fields.

    Keys may be field names or their aliases (camelCase, or "type" and
    "userId"); both spellings of a protected field are dropped.
    """
    names = {
        field.alias: name
        for name, field in model_cls.model_fields.items()
        if field.alias is not None
    }
    editable = {}
    for key, value in changes.items():
        name = names.get(key, key)
        if name not in protected:
            editable[name] = value
    return editable


class NotFoundError(LedgerError):
    """Entity does not exist or does not belong to the owner."""

    def __init__(self, entity_type: str, entity_id: Optional[int]):
        super().__init__(
            f"{entity_type.replace('_', ' ').capitalize()} not found: {entity_id}",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidStateError(LedgerError):
    """Operation not valid for the entity's current state."""
    pass


class FormatError(InvalidStateError):
    """Backup document has the wrong version or shape."""
    pass


class InactiveError(InvalidStateError):
    """Recurring rule is paused or exhausted."""
    pass
