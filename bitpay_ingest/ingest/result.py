"""
Batch Result Aggregator
"""
from dataclasses import dataclass, field
from typing import Any


@dataclass
class BatchResult:
    """Processed count and per-block error strings for one delivery."""

    event_type: str
    processed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_processed(self, count: int) -> None:
        self.processed += count

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "eventType": self.event_type,
            "processed": self.processed,
        }
        if self.errors:
            body["errors"] = list(self.errors)
        return body
