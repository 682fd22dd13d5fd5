"""
Stream events (bitpay-core).
"""
from typing import Annotated, Literal, Union

from pydantic import Field

from bitpay_ingest.domain.events.base import DomainEvent, Principal, Uint


class StreamCreated(DomainEvent):
    event: Literal["stream-created"] = "stream-created"
    stream_id: Uint
    sender: Principal
    recipient: Principal
    amount: Uint
    start_block: Uint
    end_block: Uint


class StreamWithdrawal(DomainEvent):
    event: Literal["stream-withdrawal"] = "stream-withdrawal"
    stream_id: Uint
    recipient: Principal
    amount: Uint


class StreamCancelled(DomainEvent):
    event: Literal["stream-cancelled"] = "stream-cancelled"
    stream_id: Uint
    sender: Principal
    unvested_returned: Uint
    vested_paid: Uint
    cancelled_at_block: Uint


class StreamSenderUpdated(DomainEvent):
    event: Literal["stream-sender-updated"] = "stream-sender-updated"
    stream_id: Uint
    old_sender: Principal
    new_sender: Principal
    recipient: Principal


StreamEvent = Annotated[
    Union[StreamCreated, StreamWithdrawal, StreamCancelled, StreamSenderUpdated],
    Field(discriminator="event"),
]
