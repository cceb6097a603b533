"""
Entitlement sources: what authorises a member to book a class.

Two kinds share one table (single-table inheritance on `kind`):
- UnlimitedMembership: any number of classes inside its active window.
- CreditPack: one credit per booked class; unusable once it hits zero,
  even while its window is still open.

Both answer `is_usable_for(class_type_id, location_id, now)`, so the
resolver never branches on the kind. Only `consumes_credit` differs for
the ledger.

Purchase, billing and renewal are owned by the membership platform.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint, Index

from app.db.base import Base, TimestampMixin
from app.db.types import UTCDateTime, IntegerArrayType


class EntitlementKind(str, enum.Enum):
    UNLIMITED = "UNLIMITED"
    CREDIT_PACK = "CREDIT_PACK"


class EntitlementStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXHAUSTED = "EXHAUSTED"  # credit pack at zero; a refund reactivates it
    CANCELLED = "CANCELLED"


class EntitlementSource(Base, TimestampMixin):
    __tablename__ = "entitlement_sources"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    name = Column(String(255), nullable=False, default="")
    status = Column(String(20), nullable=False, default=EntitlementStatus.ACTIVE.value)
    valid_location_ids = Column(IntegerArrayType(), nullable=False, default=list)
    valid_class_type_ids = Column(IntegerArrayType(), nullable=False, default=list)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=True)  # None = open-ended

    credits_remaining = Column(Integer, nullable=True)
    credits_used = Column(Integer, nullable=True)

    __mapper_args__ = {
        "polymorphic_on": kind,
        "polymorphic_abstract": True,
    }

    __table_args__ = (
        CheckConstraint("kind IN ('UNLIMITED', 'CREDIT_PACK')", name="check_entitlement_kind"),
        CheckConstraint(
            "status IN ('ACTIVE', 'EXHAUSTED', 'CANCELLED')", name="check_entitlement_status"
        ),
        CheckConstraint(
            "credits_remaining IS NULL OR credits_remaining >= 0",
            name="check_entitlement_credits_non_negative",
        ),
        CheckConstraint(
            "credits_used IS NULL OR credits_used >= 0",
            name="check_entitlement_credits_used_non_negative",
        ),
        Index("ix_entitlement_sources_member_status", "member_id", "status"),
    )

    consumes_credit = False

    def covers(self, now: datetime) -> bool:
        if now < self.starts_at:
            return False
        return self.ends_at is None or now <= self.ends_at

    def allows(self, class_type_id: int, location_id: int) -> bool:
        if self.valid_location_ids and location_id not in self.valid_location_ids:
            return False
        if self.valid_class_type_ids and class_type_id not in self.valid_class_type_ids:
            return False
        return True

    def has_allowance(self) -> bool:
        return True

    def is_usable_for(self, class_type_id: int, location_id: int, now: datetime) -> bool:
        return (
            self.status != EntitlementStatus.CANCELLED
            and self.covers(now)
            and self.allows(class_type_id, location_id)
            and self.has_allowance()
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, member={self.member_id}, status={self.status})>"


class UnlimitedMembership(EntitlementSource):
    __mapper_args__ = {"polymorphic_identity": EntitlementKind.UNLIMITED.value}


class CreditPack(EntitlementSource):
    __mapper_args__ = {"polymorphic_identity": EntitlementKind.CREDIT_PACK.value}

    consumes_credit = True

    def has_allowance(self) -> bool:
        return (self.credits_remaining or 0) > 0
