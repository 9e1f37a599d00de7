"""
Caregiver access-authorization workflow.

State machine: pending -> approved, pending -> rejected. Both outcomes are
absorbing. Approve and reject are single conditional writes against the
status column, so two devices racing to resolve the same request are
serialized by the store: exactly one write lands, the other sees zero rows
affected and reports "already resolved" instead of failing.

Caller identity is always an explicit argument; there is no ambient session.
"""

import secrets
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

import structlog
from pydantic import BaseModel

from core.config import AppConfig, get_config
from core.domain.errors import (
    CareError,
    ConflictError,
    NotApprovedError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from core.domain.models import Relationship, RelationshipStatus, normalize_email
from core.services.result import Result
from core.services.store import CareStore, store_call

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AccessRequest(BaseModel):
    """What the caregiver gets back after filing a request."""

    relationship_id: str
    verification_code: str


class ApprovalOutcome(BaseModel):
    """Outcome of approve/reject. `changed` is False for an idempotent no-op."""

    relationship_id: str
    status: RelationshipStatus
    changed: bool


def generate_verification_code() -> str:
    """Six digits, never starting with zero."""
    return str(100_000 + secrets.randbelow(900_000))


def require_identity(caller_id: str | None, role: str) -> str:
    if not caller_id or not caller_id.strip():
        raise NotAuthenticatedError(f"No {role} identity supplied")
    return caller_id


class RelationshipAuthorizationService:
    """Request, approve, reject and verify caregiver access to a senior."""

    def __init__(
        self,
        store: CareStore,
        config: AppConfig | None = None,
        *,
        code_generator: Callable[[], str] = generate_verification_code,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.config = config or get_config()
        self._generate_code = code_generator
        self._clock = clock
        self.logger = logger.bind(component="authorization")

    async def _call(self, operation: Awaitable[T]) -> T:
        return await store_call(operation, self.config.store.timeout_seconds)

    async def request_access(
        self, senior_email: str, caregiver_id: str, caregiver_email: str
    ) -> Result[AccessRequest, CareError]:
        """Create a pending relationship and hand back its verification code."""
        try:
            require_identity(caregiver_id, "caregiver")
            email = normalize_email(senior_email)
            if not email:
                raise ValidationError("Senior email is required")

            existing = await self._call(
                self.store.find_relationships(caregiver_id=caregiver_id, senior_email=email)
            )
            for relationship in existing:
                if relationship.status is RelationshipStatus.PENDING:
                    raise ConflictError(
                        "A request for this senior is already pending. Please wait for approval."
                    )
                if relationship.status is RelationshipStatus.APPROVED:
                    raise ConflictError("You already have approved access to this senior account.")

            if existing and not self.config.authorization.allow_rerequest_after_rejection:
                raise ConflictError("This senior has declined a previous request.")

            now = self._clock()
            relationship = Relationship(
                id=str(uuid.uuid4()),
                caregiver_id=caregiver_id,
                caregiver_email=normalize_email(caregiver_email),
                senior_email=email,
                status=RelationshipStatus.PENDING,
                verification_code=self._generate_code(),
                requested_at=now,
                updated_at=now,
            )
            stored = await self._call(self.store.insert_relationship(relationship))

        except CareError as e:
            self.logger.warning(
                "access_request_failed",
                kind=e.kind.value,
                caregiver_id=caregiver_id,
                error=e.message,
            )
            return Result.err(e)

        self.logger.info(
            "access_requested",
            relationship_id=stored.id,
            caregiver_id=caregiver_id,
            rerequest=bool(existing),
        )
        return Result.ok(
            AccessRequest(relationship_id=stored.id, verification_code=stored.verification_code)
        )

    async def approve(
        self, relationship_id: str, senior_id: str, code: str | None = None
    ) -> Result[ApprovalOutcome, CareError]:
        """Approve a pending request, checking the code when one is supplied."""
        code = code.strip() if code else None
        try:
            require_identity(senior_id, "senior")
            now = self._clock()
            affected = await self._call(
                self.store.update_relationship_if_pending(
                    relationship_id,
                    {
                        "status": RelationshipStatus.APPROVED,
                        "senior_id": senior_id,
                        "approved_at": now,
                        "updated_at": now,
                    },
                    verification_code=code,
                )
            )
            if affected:
                outcome = ApprovalOutcome(
                    relationship_id=relationship_id,
                    status=RelationshipStatus.APPROVED,
                    changed=True,
                )
            else:
                outcome = await self._explain_noop(relationship_id, code)

        except CareError as e:
            self.logger.warning(
                "approval_failed", kind=e.kind.value, relationship_id=relationship_id
            )
            return Result.err(e)

        if outcome.changed:
            self.logger.info("relationship_approved", relationship_id=relationship_id)
        return Result.ok(outcome)

    async def reject(
        self, relationship_id: str, senior_id: str
    ) -> Result[ApprovalOutcome, CareError]:
        """Reject a pending request."""
        try:
            require_identity(senior_id, "senior")
            affected = await self._call(
                self.store.update_relationship_if_pending(
                    relationship_id,
                    {"status": RelationshipStatus.REJECTED, "updated_at": self._clock()},
                )
            )
            if affected:
                outcome = ApprovalOutcome(
                    relationship_id=relationship_id,
                    status=RelationshipStatus.REJECTED,
                    changed=True,
                )
            else:
                outcome = await self._explain_noop(relationship_id, None)

        except CareError as e:
            self.logger.warning(
                "rejection_failed", kind=e.kind.value, relationship_id=relationship_id
            )
            return Result.err(e)

        if outcome.changed:
            self.logger.info("relationship_rejected", relationship_id=relationship_id)
        return Result.ok(outcome)

    async def _explain_noop(self, relationship_id: str, code: str | None) -> ApprovalOutcome:
        """
        Work out why a conditional write touched no rows.

        A resolved row means another writer got there first, which is a
        successful no-op. A still-pending row means the code did not match.
        """
        current = await self._call(self.store.get_relationship(relationship_id))
        if current is None:
            raise NotFoundError(f"Relationship {relationship_id} does not exist")

        if current.is_resolved:
            self.logger.info(
                "relationship_already_resolved",
                relationship_id=relationship_id,
                status=current.status.value,
            )
            return ApprovalOutcome(
                relationship_id=relationship_id, status=current.status, changed=False
            )

        if code is not None:
            raise ValidationError("Verification code does not match")
        raise ConflictError("Relationship was modified concurrently, please retry")

    async def verify_access(
        self, caregiver_id: str, senior_email: str
    ) -> Result[Relationship, CareError]:
        """Most recently approved relationship for the pair, or NotApproved."""
        try:
            require_identity(caregiver_id, "caregiver")
            email = normalize_email(senior_email)
            approved = await self._call(
                self.store.find_relationships(
                    caregiver_id=caregiver_id,
                    senior_email=email,
                    status=RelationshipStatus.APPROVED,
                    order_by="approved_at",
                    limit=1,
                )
            )
            relationship = next(
                (
                    r
                    for r in approved
                    if r.status is RelationshipStatus.APPROVED
                    and r.senior_email == email
                    and r.caregiver_id == caregiver_id
                ),
                None,
            )
            if relationship is None:
                raise NotApprovedError("No approved access found. Please wait for senior approval.")
            if relationship.senior_id is None:
                raise NotApprovedError("Approved relationship has no senior account attached")

        except CareError as e:
            self.logger.info(
                "access_denied", kind=e.kind.value, caregiver_id=caregiver_id
            )
            return Result.err(e)

        return Result.ok(relationship)

    async def list_relationships(
        self, caregiver_id: str
    ) -> Result[list[Relationship], CareError]:
        """Caregiver's roster, most recent request first."""
        try:
            require_identity(caregiver_id, "caregiver")
            relationships = await self._call(
                self.store.find_relationships(caregiver_id=caregiver_id)
            )
        except CareError as e:
            self.logger.warning("list_relationships_failed", kind=e.kind.value)
            return Result.err(e)
        return Result.ok(relationships)

    async def pending_request_count(self, caregiver_id: str) -> Result[int, CareError]:
        """Badge count of the caregiver's requests still awaiting a decision."""
        result = await self.list_relationships(caregiver_id)
        if result.is_err():
            return Result.err(result.unwrap_err())
        return Result.ok(
            sum(1 for r in result.unwrap() if r.status is RelationshipStatus.PENDING)
        )

    async def list_senior_requests(
        self, senior_email: str, status: RelationshipStatus | None = None
    ) -> Result[list[Relationship], CareError]:
        """Requests addressed to a senior, as shown on their approval screen."""
        try:
            email = normalize_email(senior_email)
            if not email:
                raise NotAuthenticatedError("No senior identity supplied")
            relationships = await self._call(
                self.store.find_relationships(senior_email=email, status=status)
            )
        except CareError as e:
            self.logger.warning("list_senior_requests_failed", kind=e.kind.value)
            return Result.err(e)
        return Result.ok(relationships)

    async def find_active_senior(self, caregiver_id: str) -> Result[Relationship, CareError]:
        """The caregiver's most recently approved relationship, whichever senior it is."""
        try:
            require_identity(caregiver_id, "caregiver")
            approved = await self._call(
                self.store.find_relationships(
                    caregiver_id=caregiver_id,
                    status=RelationshipStatus.APPROVED,
                    order_by="approved_at",
                    limit=1,
                )
            )
            if not approved:
                raise NotApprovedError("No approved relationship found")
        except CareError as e:
            self.logger.info("no_active_senior", kind=e.kind.value, caregiver_id=caregiver_id)
            return Result.err(e)
        return Result.ok(approved[0])
