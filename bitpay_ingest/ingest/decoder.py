"""
Event Decoder - raw print tuple -> typed domain event.
"""
from typing import Any

from pydantic import ValidationError

from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.domain.events.base import DomainEvent, build_adapter, union_tags

logger = get_logger(__name__)


class EventDecoder:
    """
    Decode tuples against one domain's closed event union.

    A tuple with an unknown tag or a missing/ill-typed field yields ``None``;
    it is dropped, not reported as an error.
    """

    def __init__(self, union: Any) -> None:
        self._adapter = build_adapter(union)
        self.tags = frozenset(union_tags(union))

    def decode(self, value: dict[str, Any]) -> DomainEvent | None:
        try:
            return self._adapter.validate_python(value)
        except ValidationError as e:
            logger.debug(
                "Dropping undecodable event",
                extra_data={"tag": value.get("event"), "errors": e.error_count()},
            )
            return None
