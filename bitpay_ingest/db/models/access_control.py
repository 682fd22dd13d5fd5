"""
Access Control Models - roles, authorized contracts, audit trail and system flags
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, Boolean, String, DateTime, JSON, Enum as SQLEnum,
    UniqueConstraint,
)

from bitpay_ingest.db.database import Base


class Role(str, enum.Enum):
    ADMIN = "admin"
    OPERATOR = "operator"


class ContractStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    ROLLED_BACK = "rolled_back"


class AdminScope(str, enum.Enum):
    ACCESS_CONTROL = "access-control"
    TREASURY = "treasury"


class RoleAssignment(Base):
    """Current holder state of a role, keyed by (principal, role)"""

    __tablename__ = "role_assignments"

    principal = Column(String(150), primary_key=True)
    role = Column(SQLEnum(Role), primary_key=True)

    is_active = Column(Boolean, nullable=False, default=True)
    granted_by = Column(String(150), nullable=True)
    revoked_by = Column(String(150), nullable=True)
    changed_at_block = Column(BigInteger, nullable=True)


class AuthorizedContract(Base):
    """Contract allowed to call into protected protocol functions"""

    __tablename__ = "authorized_contracts"

    contract = Column(String(200), primary_key=True)

    status = Column(SQLEnum(ContractStatus), nullable=False, default=ContractStatus.ACTIVE)
    authorized_by = Column(String(150), nullable=True)
    revoked_by = Column(String(150), nullable=True)
    changed_at_block = Column(BigInteger, nullable=True)


class AccessControlEvent(Base):
    """Audit trail row for every access-control event"""

    __tablename__ = "access_control_events"

    id = Column(Integer, primary_key=True, index=True)
    event_tag = Column(String(80), nullable=False, index=True)
    actor = Column(String(150), nullable=True)
    payload = Column(JSON, nullable=False)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_access_control_event"),
    )


class AdminHistory(Base):
    """Admin membership and admin-transfer history for treasury and access control"""

    __tablename__ = "admin_history"

    id = Column(Integer, primary_key=True, index=True)
    scope = Column(SQLEnum(AdminScope), nullable=False, index=True)
    action = Column(String(80), nullable=False)
    subject = Column(String(150), nullable=True)  # admin being added/removed/handed over to
    actor = Column(String(150), nullable=True)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_admin_history_event"),
    )


class SystemStatus(Base):
    """Keyed system flag or scalar (protocol_status, treasury_balance, marketplace_fee, ...)"""

    __tablename__ = "system_status"

    key = Column(String(80), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_by = Column(String(150), nullable=True)
    updated_at_block = Column(BigInteger, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
