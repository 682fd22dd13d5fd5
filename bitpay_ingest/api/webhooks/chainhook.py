"""
Chainhook Webhooks - one POST/GET pair per domain.

POST admits the delivery through the payload gate, then runs it through the
domain pipeline. Per-block failures come back as ``errors`` in a 200 body;
anything that escapes the pipeline is a 500.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.api.dependencies.webhook_auth import get_payload_gate
from bitpay_ingest.core.exceptions import AppException, WebhookProcessingError
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.database import get_db
from bitpay_ingest.domain.services.chain_reader import ChainReader, get_chain_reader
from bitpay_ingest.domain.services.payment_links import PaymentLinkClient, get_payment_link_client
from bitpay_ingest.domain.services.realtime import RealtimeHub, get_realtime_hub
from bitpay_ingest.ingest.gate import PayloadGate
from bitpay_ingest.ingest.registry import DomainSpec, build_pipeline

logger = get_logger(__name__)


def build_chainhook_router(spec: DomainSpec) -> APIRouter:
    router = APIRouter()

    @router.post(
        "",
        summary=f"Webhook - {spec.dispatcher.service_name}",
        description=(
            "Chainhook delivery for the "
            f"{spec.slug} domain: rollback blocks are reverted, apply blocks projected."
        ),
        name=f"chainhook_{spec.slug.replace('-', '_')}",
    )
    async def chainhook_webhook(
        request: Request,
        gate: PayloadGate = Depends(get_payload_gate),
        db: AsyncSession = Depends(get_db),
        hub: RealtimeHub = Depends(get_realtime_hub),
        chain_reader: ChainReader = Depends(get_chain_reader),
        payment_links: PaymentLinkClient = Depends(get_payment_link_client),
    ):
        batch = await gate.admit(request)
        pipeline = build_pipeline(
            spec.slug, db, hub,
            chain_reader=chain_reader,
            payment_links=payment_links,
        )
        try:
            result = await pipeline.run(batch)
        except AppException:
            raise
        except Exception as e:
            logger.error(
                "Chainhook delivery failed",
                extra_data={"domain": spec.slug, "error": str(e)},
                exc_info=True,
            )
            raise WebhookProcessingError(str(e))
        return result.to_response()

    @router.get(
        "",
        summary=f"Descriptor - {spec.dispatcher.service_name}",
        name=f"chainhook_{spec.slug.replace('-', '_')}_info",
    )
    async def chainhook_info():
        return spec.descriptor()

    return router
