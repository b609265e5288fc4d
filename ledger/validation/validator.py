"""
Two-Stage Posting Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - REQUEST VALIDATION:
- Amount strictly positive
- Description present and within the length limit
- Both accounts named, and not the same account
- Runs before anything is read from storage

STAGE 2 - ROLE VALIDATION:
- The source and destination account classes must be allowed for the kind
  (a deposit must come from revenue and land in an asset, and so on)
- Needs the loaded accounts, so it runs inside the atomic unit

WHY TWO STAGES:
1. Malformed input is rejected without touching storage
2. Better error messages (know exactly what kind of issue)
3. Stage 2 reuses the accounts the posting engine loads anyway

IMPORTANT: Validation NEVER silently fixes issues.
Errors abort the posting; warnings are reported and logged.
"""

from datetime import date, timedelta
from typing import Optional

import structlog

from ledger.engine.balance import KIND_ROLES, roles_allow
from ledger.engine.errors import ValidationError
from ledger.models.ledger import (
    Account,
    PostingRequest,
    TransactionKind,
    ValidationIssue,
    ValidationResult,
)

logger = structlog.get_logger(__name__)

# Postings dated further ahead than this are flagged, not rejected.
FUTURE_DATE_TOLERANCE_DAYS = 366

# Matches the description column of the transactions table.
MAX_DESCRIPTION_LENGTH = 500


class PostingValidator:
    """
    Validates posting requests through a two-stage pipeline.

    Stage 1: Request validation (no storage access)
    Stage 2: Role validation (needs the loaded accounts)
    """

    def _validate_request(
        self,
        request: PostingRequest,
    ) -> list[ValidationIssue]:
        """
        Stage 1: Request validation.

        Returns: list_of_issues
        """
        issues = []

        if request.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount must be greater than zero, got {request.amount}",
            ))

        if not request.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
            ))
        elif len(request.description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=(
                    f"Description is {len(request.description)} characters; "
                    f"the limit is {MAX_DESCRIPTION_LENGTH}"
                ),
            ))

        if request.from_account_id is None:
            issues.append(ValidationIssue(
                field="from_account_id",
                issue_type="missing",
                message=f"A {request.kind.value} needs a source account",
            ))

        if request.to_account_id is None:
            issues.append(ValidationIssue(
                field="to_account_id",
                issue_type="missing",
                message=f"A {request.kind.value} needs a destination account",
            ))

        if (
            request.from_account_id is not None
            and request.from_account_id == request.to_account_id
        ):
            issues.append(ValidationIssue(
                field="to_account_id",
                issue_type="same_account",
                message="Source and destination must be different accounts",
            ))

        max_future_date = date.today() + timedelta(days=FUTURE_DATE_TOLERANCE_DAYS)
        if request.date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Posting date ({request.date}) is more than a year ahead",
                severity="warning",
            ))

        return issues

    def _validate_roles(
        self,
        kind: TransactionKind,
        source: Account,
        destination: Account,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Role validation.

        Returns: list_of_issues
        """
        if roles_allow(kind, source.account_class, destination.account_class):
            return []

        sources, destinations = KIND_ROLES[kind]
        issues = []
        if source.account_class not in sources:
            issues.append(ValidationIssue(
                field="from_account_id",
                issue_type="wrong_class",
                message=(
                    f"A {kind.value} cannot come from a {source.account_class.value} "
                    f"account ({source.name})"
                ),
            ))
        if destination.account_class not in destinations:
            issues.append(ValidationIssue(
                field="to_account_id",
                issue_type="wrong_class",
                message=(
                    f"A {kind.value} cannot go to a {destination.account_class.value} "
                    f"account ({destination.name})"
                ),
            ))
        return issues

    def validate(
        self,
        request: PostingRequest,
        source: Optional[Account] = None,
        destination: Optional[Account] = None,
    ) -> ValidationResult:
        """
        Run the validation pipeline.

        Stage 2 only runs when both accounts are given and stage 1
        found no errors.
        """
        issues = self._validate_request(request)

        if (
            source is not None
            and destination is not None
            and not any(issue.severity == "error" for issue in issues)
        ):
            issues.extend(self._validate_roles(request.kind, source, destination))

        return ValidationResult(issues=issues)

    def check_request(self, request: PostingRequest) -> None:
        """Raise ValidationError if stage 1 finds any error."""
        self._raise_on_errors(self.validate(request))

    def check_roles(
        self,
        kind: TransactionKind,
        source: Account,
        destination: Account,
    ) -> None:
        """Raise ValidationError if the account classes do not fit the kind."""
        self._raise_on_errors(
            ValidationResult(issues=self._validate_roles(kind, source, destination))
        )

    def _raise_on_errors(self, result: ValidationResult) -> None:
        for issue in result.issues:
            if issue.severity == "warning":
                logger.warning("posting_warning", field=issue.field, message=issue.message)

        if result.has_errors:
            errors = [issue for issue in result.issues if issue.severity == "error"]
            raise ValidationError(
                "; ".join(issue.message for issue in errors),
                errors,
            )
