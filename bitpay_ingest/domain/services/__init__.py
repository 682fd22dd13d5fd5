"""
Domain Services
"""
from bitpay_ingest.domain.services.projection_store import ProjectionStore, ProjectionLookups
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.domain.services.realtime import RealtimeHub
from bitpay_ingest.domain.services.chain_reader import ChainReader
from bitpay_ingest.domain.services.admin_directory import (
    AdminDirectory,
    ChainAdminDirectory,
    RoleAdminDirectory,
)
from bitpay_ingest.domain.services.payment_links import PaymentLinkClient
from bitpay_ingest.domain.services.settlement import SettlementRelay
from bitpay_ingest.domain.services.payment_gateway_service import PaymentGatewayService

__all__ = [
    "ProjectionStore",
    "ProjectionLookups",
    "FanOutNotifier",
    "RealtimeHub",
    "ChainReader",
    "AdminDirectory",
    "ChainAdminDirectory",
    "RoleAdminDirectory",
    "PaymentLinkClient",
    "SettlementRelay",
    "PaymentGatewayService",
]
