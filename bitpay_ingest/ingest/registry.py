"""
Domain registry - the five chainhook domains and how their pipelines are built.
"""
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.domain.dispatchers import (
    AccessControlDispatcher,
    DomainDispatcher,
    MarketplaceDispatcher,
    NFTDispatcher,
    StreamsDispatcher,
    TreasuryDispatcher,
)
from bitpay_ingest.domain.services.admin_directory import (
    AdminDirectory,
    ChainAdminDirectory,
    RoleAdminDirectory,
)
from bitpay_ingest.domain.services.chain_reader import ChainReader, get_chain_reader
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.domain.services.payment_links import PaymentLinkClient, get_payment_link_client
from bitpay_ingest.domain.services.projection_store import ProjectionLookups, ProjectionStore
from bitpay_ingest.domain.services.realtime import RealtimeHub
from bitpay_ingest.ingest.pipeline import IngestPipeline


@dataclass(frozen=True)
class DomainSpec:
    slug: str  # URL segment under /webhooks/chainhook/
    dispatcher: type[DomainDispatcher]
    admins: Callable[[ProjectionLookups, ChainReader | None], AdminDirectory] | None = None

    @property
    def event_type(self) -> str:
        return self.dispatcher.event_type

    def descriptor(self) -> dict:
        """Capability descriptor returned by GET on the webhook route"""
        return {
            "success": True,
            "message": f"{self.dispatcher.service_name} webhook endpoint",
            "status": "active",
            "service": self.dispatcher.service_name,
            "events": self.dispatcher.tags(),
        }


def _chain_admins(lookups: ProjectionLookups, reader: ChainReader | None) -> AdminDirectory:
    return ChainAdminDirectory(reader or get_chain_reader())


def _role_admins(lookups: ProjectionLookups, reader: ChainReader | None) -> AdminDirectory:
    return RoleAdminDirectory(lookups)


DOMAINS: dict[str, DomainSpec] = {
    spec.slug: spec
    for spec in (
        DomainSpec("streams", StreamsDispatcher),
        DomainSpec("marketplace", MarketplaceDispatcher),
        DomainSpec("nft", NFTDispatcher),
        DomainSpec("treasury", TreasuryDispatcher, _chain_admins),
        DomainSpec("access-control", AccessControlDispatcher, _role_admins),
    )
}


def build_pipeline(
    slug: str,
    db: AsyncSession,
    hub: RealtimeHub,
    *,
    chain_reader: ChainReader | None = None,
    payment_links: PaymentLinkClient | None = None,
) -> IngestPipeline:
    """Wire one request's pipeline: store, lookups, notifier, admins, dispatcher."""
    spec = DOMAINS[slug]
    store = ProjectionStore(db, spec.dispatcher.domain)
    lookups = ProjectionLookups(db)
    notifier = FanOutNotifier(db, hub)
    admins = spec.admins(lookups, chain_reader) if spec.admins else None

    if spec.dispatcher is MarketplaceDispatcher:
        dispatcher = MarketplaceDispatcher(
            store, notifier, lookups, admins,
            payment_links=payment_links or get_payment_link_client(),
        )
    else:
        dispatcher = spec.dispatcher(store, notifier, lookups, admins)

    return IngestPipeline(db, dispatcher, notifier)
