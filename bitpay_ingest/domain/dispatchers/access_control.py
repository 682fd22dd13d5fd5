"""
Access-control dispatcher (bitpay-access-control)

Role membership, authorized contracts and the protocol pause flag. Every
event also lands in the access_control_events audit trail.
"""
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.access_control import (
    AccessControlEvent,
    AdminHistory,
    AdminScope,
    AuthorizedContract,
    ContractStatus,
    Role,
    RoleAssignment,
    SystemStatus,
)
from bitpay_ingest.db.models.notification import NotificationPriority
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.events import DomainEvent
from bitpay_ingest.domain.events import access_control as ev
from bitpay_ingest.domain.services.notifier import short_principal
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)

PROTOCOL_STATUS_KEY = "protocol_status"
ADMIN_CONSOLE_URL = "/dashboard/admin/access-control"

# tag -> (role, granted?)
ROLE_CHANGES = {
    ev.AdminAdded.tag(): (Role.ADMIN, True),
    ev.AdminRemoved.tag(): (Role.ADMIN, False),
    ev.OperatorAdded.tag(): (Role.OPERATOR, True),
    ev.OperatorRemoved.tag(): (Role.OPERATOR, False),
}


def _role_subject(event: DomainEvent) -> tuple[str, str]:
    """(principal, actor) of a role change event"""
    principal = getattr(event, "admin", None) or getattr(event, "operator")
    actor = getattr(event, "added_by", None) or getattr(event, "removed_by")
    return principal, actor


class AccessControlDispatcher(DomainDispatcher):
    domain = "access-control"
    event_type = "access-control-events"
    service_name = "BitPay Access Control Events"
    events = ev.AccessControlEvent

    async def dispatch(self, event: DomainEvent, ctx: ProcessingContext) -> bool:
        applied = await super().dispatch(event, ctx)
        if applied:
            await self.store.insert_once(AccessControlEvent(
                event_tag=event.event,
                actor=self._actor(event),
                payload=event.payload(),
                tx_hash=ctx.tx_hash,
                event_index=ctx.event_index,
                block_height=ctx.block_height,
            ))
        return applied

    @staticmethod
    def _actor(event: DomainEvent) -> str | None:
        for field in ("added_by", "removed_by", "authorized_by", "revoked_by",
                      "paused_by", "unpaused_by", "current_admin", "old_admin"):
            value = getattr(event, field, None)
            if value:
                return value
        return None

    async def _history(self, action: str, subject: str | None, actor: str | None, ctx: ProcessingContext) -> None:
        await self.store.insert_once(AdminHistory(
            scope=AdminScope.ACCESS_CONTROL,
            action=action,
            subject=subject,
            actor=actor,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))

    async def _notify_admins(
        self,
        type: str,
        title: str,
        message: str,
        ctx: ProcessingContext,
        *,
        data: dict,
        priority: NotificationPriority,
        push: tuple[str, str] | None = None,
        action_text: str | None = None,
    ) -> None:
        """Notify every admin; ``push`` is the (realtime event, type) each admin also receives."""
        for admin in await self.admin_principals():
            await self.notifier.notify(
                admin, type, title, message,
                data=data,
                priority=priority,
                action_url=ADMIN_CONSOLE_URL,
                action_text=action_text,
                source_tx_hash=ctx.tx_hash,
            )
            if push is not None:
                push_event, push_type = push
                self.notifier.push_to_user(admin, push_event, {"type": push_type, "data": data})

    # ==================== roles ====================

    @handles(ev.AdminAdded, ev.AdminRemoved, ev.OperatorAdded, ev.OperatorRemoved)
    async def on_role_changed(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        role, granted = ROLE_CHANGES[event.event]
        principal, actor = _role_subject(event)
        values = {"is_active": granted, "changed_at_block": ctx.block_height}
        values["granted_by" if granted else "revoked_by"] = actor
        await self.store.upsert(RoleAssignment, {"principal": principal, "role": role}, values)
        await self._history(event.event.removeprefix("access-"), principal, actor, ctx)

        verb = "granted" if granted else "revoked"
        await self.notifier.notify(
            principal,
            "role_changed",
            f"{role.value.title()} Role {verb.title()}",
            f"Your {role.value} role was {verb} by {short_principal(actor)}",
            data={"role": role.value, "granted": granted, "actor": actor},
            priority=NotificationPriority.HIGH,
            source_tx_hash=ctx.tx_hash,
        )
        self.notifier.push_to_user(principal, "access-control:role-changed", {
            "type": event.event.removeprefix("access-"),
            "data": {
                "principal": principal,
                "role": role.value,
                "granted": granted,
                "actor": actor,
                "txHash": ctx.tx_hash,
            },
        })

    # ==================== contracts ====================

    @handles(ev.ContractAuthorized)
    async def on_contract_authorized(self, event: ev.ContractAuthorized, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AuthorizedContract,
            {"contract": event.contract},
            {
                "status": ContractStatus.ACTIVE,
                "authorized_by": event.authorized_by,
                "changed_at_block": ctx.block_height,
            },
        )
        await self._notify_admins(
            "security_alert",
            "Contract Authorized",
            f"Contract {event.contract} has been authorized by {short_principal(event.authorized_by)}.",
            ctx,
            data={"contract": event.contract, "authorizedBy": event.authorized_by, "txHash": ctx.tx_hash},
            priority=NotificationPriority.HIGH,
            push=("access-control:contract", "contract-authorized"),
            action_text="View Details",
        )

    @handles(ev.ContractRevoked)
    async def on_contract_revoked(self, event: ev.ContractRevoked, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AuthorizedContract,
            {"contract": event.contract},
            {
                "status": ContractStatus.REVOKED,
                "revoked_by": event.revoked_by,
                "changed_at_block": ctx.block_height,
            },
        )
        await self._notify_admins(
            "security_alert",
            "Contract Revoked",
            f"Contract {event.contract} has been REVOKED by {short_principal(event.revoked_by)}.",
            ctx,
            data={"contract": event.contract, "revokedBy": event.revoked_by, "txHash": ctx.tx_hash},
            priority=NotificationPriority.URGENT,
            push=("access-control:contract", "contract-revoked"),
            action_text="Review Now",
        )

    # ==================== protocol pause ====================

    async def _set_paused(self, paused: bool, actor: str, at_block: int, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            SystemStatus,
            {"key": PROTOCOL_STATUS_KEY},
            {"value": {"paused": paused, "at_block": at_block}, "updated_by": actor, "updated_at_block": ctx.block_height},
        )

    @handles(ev.ProtocolPaused)
    async def on_paused(self, event: ev.ProtocolPaused, ctx: ProcessingContext) -> None:
        await self._set_paused(True, event.paused_by, event.paused_at, ctx)
        data = {"pausedBy": event.paused_by, "pausedAt": str(event.paused_at)}
        await self._notify_admins(
            "protocol_paused",
            "Protocol Paused",
            f"The protocol was paused by {short_principal(event.paused_by)} at block {event.paused_at}.",
            ctx,
            data=data,
            priority=NotificationPriority.URGENT,
            push=("access-control:protocol", "protocol-paused"),
            action_text="View Status",
        )
        self.notifier.broadcast("system:paused", {**data, "txHash": ctx.tx_hash})

    @handles(ev.ProtocolUnpaused)
    async def on_unpaused(self, event: ev.ProtocolUnpaused, ctx: ProcessingContext) -> None:
        await self._set_paused(False, event.unpaused_by, event.unpaused_at, ctx)
        data = {"unpausedBy": event.unpaused_by, "unpausedAt": str(event.unpaused_at)}
        await self._notify_admins(
            "protocol_unpaused",
            "Protocol Resumed",
            f"The protocol was unpaused by {short_principal(event.unpaused_by)} at block {event.unpaused_at}.",
            ctx,
            data=data,
            priority=NotificationPriority.HIGH,
            push=("access-control:protocol", "protocol-unpaused"),
            action_text="View Status",
        )
        self.notifier.broadcast("system:unpaused", {**data, "txHash": ctx.tx_hash})

    # ==================== admin transfer ====================

    def _push_transfer(self, type: str, roles: dict[str, str], data: dict) -> None:
        """roles maps principal -> the role label it receives the push under"""
        for principal, role in roles.items():
            self.notifier.push_to_user(principal, "access-control:admin-transfer", {
                "type": type,
                "role": role,
                "data": data,
            })

    @handles(ev.AdminTransferInitiated)
    async def on_admin_transfer_initiated(self, event: ev.AdminTransferInitiated, ctx: ProcessingContext) -> None:
        await self._history("transfer-initiated", event.new_admin, event.current_admin, ctx)

        await self.notifier.notify(
            event.current_admin,
            "admin_transfer",
            "Admin Transfer Initiated",
            f"You have initiated admin transfer to {short_principal(event.new_admin)}. "
            "The new admin must accept within the timelock period.",
            data={"newAdmin": event.new_admin},
            priority=NotificationPriority.HIGH,
            action_url=ADMIN_CONSOLE_URL,
            action_text="View Transfer",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.new_admin,
            "admin_transfer",
            "Admin Transfer Pending",
            f"{short_principal(event.current_admin)} has initiated admin transfer to you. "
            "Accept it to complete the transfer.",
            data={"currentAdmin": event.current_admin},
            priority=NotificationPriority.URGENT,
            action_url=ADMIN_CONSOLE_URL,
            action_text="Accept Transfer",
            source_tx_hash=ctx.tx_hash,
        )
        self._push_transfer(
            "admin-transfer-initiated",
            {event.current_admin: "current-admin", event.new_admin: "new-admin"},
            {"currentAdmin": event.current_admin, "newAdmin": event.new_admin, "txHash": ctx.tx_hash},
        )

    @handles(ev.AdminTransferCompleted)
    async def on_admin_transfer_completed(self, event: ev.AdminTransferCompleted, ctx: ProcessingContext) -> None:
        await self._history("transfer-completed", event.new_admin, event.old_admin, ctx)

        await self.notifier.notify(
            event.old_admin,
            "admin_transfer",
            "Admin Transfer Complete",
            f"Admin transfer to {short_principal(event.new_admin)} has been completed.",
            data={"newAdmin": event.new_admin},
            action_url="/dashboard",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.new_admin,
            "admin_transfer",
            "You are now Admin",
            f"Admin transfer from {short_principal(event.old_admin)} is complete. "
            "You now have full admin privileges.",
            data={"oldAdmin": event.old_admin},
            priority=NotificationPriority.HIGH,
            action_url="/dashboard/admin",
            action_text="Manage System",
            source_tx_hash=ctx.tx_hash,
        )
        self._push_transfer(
            "admin-transfer-completed",
            {event.old_admin: "old-admin", event.new_admin: "new-admin"},
            {"oldAdmin": event.old_admin, "newAdmin": event.new_admin, "txHash": ctx.tx_hash},
        )

    # ==================== revert ====================

    async def _drop_audit(self, ctx: ProcessingContext) -> None:
        await self.store.delete_where(AccessControlEvent, tx_hash=ctx.tx_hash, event_index=ctx.event_index)
        await self.store.delete_where(AdminHistory, tx_hash=ctx.tx_hash, event_index=ctx.event_index)

    @reverts(ev.AdminAdded, ev.AdminRemoved, ev.OperatorAdded, ev.OperatorRemoved)
    async def undo_role_changed(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        role, granted = ROLE_CHANGES[event.event]
        principal, _ = _role_subject(event)
        await self.store.update(RoleAssignment, (principal, role), {"is_active": not granted})
        await self._drop_audit(ctx)

    @reverts(ev.ContractAuthorized)
    async def undo_contract_authorized(self, event: ev.ContractAuthorized, ctx: ProcessingContext) -> None:
        await self.store.update(AuthorizedContract, event.contract, {"status": ContractStatus.ROLLED_BACK})
        await self._drop_audit(ctx)

    @reverts(ev.ContractRevoked)
    async def undo_contract_revoked(self, event: ev.ContractRevoked, ctx: ProcessingContext) -> None:
        await self.store.update(AuthorizedContract, event.contract, {"status": ContractStatus.ACTIVE})
        await self._drop_audit(ctx)

    @reverts(ev.ProtocolPaused)
    async def undo_paused(self, event: ev.ProtocolPaused, ctx: ProcessingContext) -> None:
        await self.store.update(SystemStatus, PROTOCOL_STATUS_KEY, {"value": {"paused": False}})
        await self._drop_audit(ctx)

    @reverts(ev.ProtocolUnpaused)
    async def undo_unpaused(self, event: ev.ProtocolUnpaused, ctx: ProcessingContext) -> None:
        await self.store.update(SystemStatus, PROTOCOL_STATUS_KEY, {"value": {"paused": True}})
        await self._drop_audit(ctx)

    @reverts(ev.AdminTransferInitiated, ev.AdminTransferCompleted)
    async def undo_admin_transfer(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        await self._drop_audit(ctx)
