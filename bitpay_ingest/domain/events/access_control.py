"""
Access-control events (bitpay-access-control).
"""
from typing import Annotated, Literal, Union

from pydantic import Field

from bitpay_ingest.domain.events.base import DomainEvent, Principal, Uint


class AdminAdded(DomainEvent):
    event: Literal["access-admin-added"] = "access-admin-added"
    admin: Principal
    added_by: Principal


class AdminRemoved(DomainEvent):
    event: Literal["access-admin-removed"] = "access-admin-removed"
    admin: Principal
    removed_by: Principal


class OperatorAdded(DomainEvent):
    event: Literal["access-operator-added"] = "access-operator-added"
    operator: Principal
    added_by: Principal


class OperatorRemoved(DomainEvent):
    event: Literal["access-operator-removed"] = "access-operator-removed"
    operator: Principal
    removed_by: Principal


class ContractAuthorized(DomainEvent):
    event: Literal["access-contract-authorized"] = "access-contract-authorized"
    contract: Principal
    authorized_by: Principal


class ContractRevoked(DomainEvent):
    event: Literal["access-contract-revoked"] = "access-contract-revoked"
    contract: Principal
    revoked_by: Principal


class ProtocolPaused(DomainEvent):
    event: Literal["access-protocol-paused"] = "access-protocol-paused"
    paused_by: Principal
    paused_at: Uint


class ProtocolUnpaused(DomainEvent):
    event: Literal["access-protocol-unpaused"] = "access-protocol-unpaused"
    unpaused_by: Principal
    unpaused_at: Uint


class AdminTransferInitiated(DomainEvent):
    event: Literal["access-admin-transfer-initiated"] = "access-admin-transfer-initiated"
    current_admin: Principal
    new_admin: Principal
    initiated_at: Uint


class AdminTransferCompleted(DomainEvent):
    event: Literal["access-admin-transfer-completed"] = "access-admin-transfer-completed"
    old_admin: Principal
    new_admin: Principal
    completed_at: Uint


AccessControlEvent = Annotated[
    Union[
        AdminAdded,
        AdminRemoved,
        OperatorAdded,
        OperatorRemoved,
        ContractAuthorized,
        ContractRevoked,
        ProtocolPaused,
        ProtocolUnpaused,
        AdminTransferInitiated,
        AdminTransferCompleted,
    ],
    Field(discriminator="event"),
]
