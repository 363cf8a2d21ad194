"""
Wire data model shared by the seller, the facilitator and the client.

Field aliases are part of the wire contract; models are always dumped with
``by_alias=True`` and ``exclude_none=True``.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_serializer

PAYMENT_HEADER = 'X-PAYMENT'

REQUIREMENT_ID_PREFIX = 'req_'
DEFAULT_REQUIREMENT_TTL_SECONDS = 5 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Render ``value`` as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def new_requirement_id() -> str:
    return f'{REQUIREMENT_ID_PREFIX}{secrets.token_hex(8)}'


class PaymentRequirement(BaseModel):
    """Terms under which a resource is released."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    requirement_id: str = Field(alias='id')
    product_id: str = Field(alias='product')
    amount: int = Field(gt=0)
    currency: str
    chain: str
    verifier_endpoint: str = Field(alias='facilitator')
    expires_at: AwareDatetime
    recipient: Optional[str] = None

    @field_serializer('expires_at')
    def _serialize_expires_at(self, value: datetime) -> str:
        return isoformat_z(value)

    @classmethod
    def issue(
        cls,
        *,
        product_id: str,
        amount: int,
        currency: str,
        chain: str,
        verifier_endpoint: str,
        ttl_seconds: int = DEFAULT_REQUIREMENT_TTL_SECONDS,
        recipient: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> 'PaymentRequirement':
        created = now or utc_now()
        return cls(
            requirement_id=new_requirement_id(),
            product_id=product_id,
            amount=amount,
            currency=currency,
            chain=chain,
            verifier_endpoint=verifier_endpoint,
            expires_at=created + timedelta(seconds=ttl_seconds),
            recipient=recipient or None,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class PaymentProof(BaseModel):
    """
    Evidence of payment presented to the facilitator.

    Unknown keys are kept so that arbitrary proof objects survive a round trip.
    """

    model_config = ConfigDict(extra='allow')

    payer: str
    timestamp: str
    signature: Optional[str] = None
    transaction: Optional[str] = None

    def transaction_reference(self) -> Optional[str]:
        return self.transaction or self.signature

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', exclude_none=True)


class VerificationRequest(BaseModel):
    """Body of ``POST /verify``."""

    proof: Any
    payer: str
    amount: int = Field(gt=0)
    chain: str = 'solana'
    request_id: Optional[str] = None
    expires_at: Optional[AwareDatetime] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', exclude_none=True)


class VerificationResponse(BaseModel):
    """Body returned by ``POST /verify``; success and failure share one shape."""

    ok: bool
    verification: Optional[str] = None
    settled: Optional[bool] = None
    timestamp: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, token: str, *, issued_at: Optional[datetime] = None) -> 'VerificationResponse':
        return cls(
            ok=True,
            verification=token,
            settled=True,
            timestamp=isoformat_z(issued_at or utc_now()),
        )

    @classmethod
    def failure(cls, error: str, detail: str) -> 'VerificationResponse':
        return cls(ok=False, error=error, detail=detail)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
