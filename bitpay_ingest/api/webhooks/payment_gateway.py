"""
StacksPay Webhook - payment status callbacks for gateway marketplace purchases.
"""
import json

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.api.dependencies.webhook_auth import verify_stackspay_signature
from bitpay_ingest.core.exceptions import InvalidPayloadError
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.database import get_db
from bitpay_ingest.domain.services.payment_gateway_service import GatewayEvent, PaymentGatewayService
from bitpay_ingest.domain.services.realtime import RealtimeHub, get_realtime_hub
from bitpay_ingest.domain.services.settlement import SettlementRelay, get_settlement_relay

logger = get_logger(__name__)

SUPPORTED_CURRENCIES = ["BTC", "STX", "SBTC"]

router = APIRouter()


@router.post(
    "",
    summary="Webhook - StacksPay",
    description="Signed StacksPay payment callbacks (created, pending, completed, failed, cancelled).",
)
async def payment_gateway_webhook(
    body: bytes = Depends(verify_stackspay_signature),
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub),
    relay: SettlementRelay = Depends(get_settlement_relay),
):
    try:
        event = GatewayEvent.model_validate(json.loads(body))
    except ValidationError as e:
        raise InvalidPayloadError("Invalid payload structure", {"errors": e.error_count()})
    except ValueError:
        raise InvalidPayloadError("Invalid JSON body")

    logger.info(
        "StacksPay event received",
        extra_data={"type": event.type, "payment_id": event.payment.id, "delivery_id": event.delivery_id},
    )
    status_code, content = await PaymentGatewayService(db, hub, relay).handle(event)
    return JSONResponse(status_code=status_code, content=content)


@router.get("", summary="Descriptor - StacksPay")
async def payment_gateway_info():
    return {
        "success": True,
        "message": "StacksPay Payment Gateway webhook endpoint",
        "status": "active",
        "supportedCurrencies": SUPPORTED_CURRENCIES,
        "gateway": "StacksPay",
    }
