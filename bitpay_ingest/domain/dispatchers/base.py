"""
Domain Dispatcher base.

A dispatcher routes each decoded event of its domain to exactly one apply
handler, and to exactly one revert handler during reorg reconciliation.
Handlers are registered with ``@handles`` / ``@reverts``; a subclass whose
event union has a variant without both fails at class creation.
"""
from typing import Any, Awaitable, Callable, ClassVar, TypeVar

from bitpay_ingest.core.logging import get_logger, ingest_context
from bitpay_ingest.domain.events.base import DomainEvent, union_tags
from bitpay_ingest.domain.services.admin_directory import AdminDirectory
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.domain.services.projection_store import ProjectionLookups, ProjectionStore
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[None]])


def handles(*event_classes: type[DomainEvent]) -> Callable[[F], F]:
    """Register the decorated coroutine as the apply handler of the given variants."""
    def decorator(func: F) -> F:
        func._applies = tuple(cls.tag() for cls in event_classes)  # type: ignore[attr-defined]
        return func
    return decorator


def reverts(*event_classes: type[DomainEvent]) -> Callable[[F], F]:
    """Register the decorated coroutine as the revert handler of the given variants."""
    def decorator(func: F) -> F:
        func._reverts = tuple(cls.tag() for cls in event_classes)  # type: ignore[attr-defined]
        return func
    return decorator


class DomainDispatcher:
    domain: ClassVar[str]
    event_type: ClassVar[str]  # "eventType" in batch responses
    service_name: ClassVar[str]  # capability descriptor
    events: ClassVar[Any] = None  # closed Annotated[Union[...]] of the domain
    include_native: ClassVar[bool] = False

    _appliers: ClassVar[dict[str, str]] = {}
    _reverters: ClassVar[dict[str, str]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.events is None:
            return

        appliers: dict[str, str] = {}
        reverters: dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                for tag in getattr(attr, "_applies", ()):
                    appliers[tag] = name
                for tag in getattr(attr, "_reverts", ()):
                    reverters[tag] = name

        tags = union_tags(cls.events)
        missing_apply = [tag for tag in tags if tag not in appliers]
        missing_revert = [tag for tag in tags if tag not in reverters]
        if missing_apply or missing_revert:
            raise TypeError(
                f"{cls.__name__} does not handle every {cls.domain} event: "
                f"apply missing {missing_apply}, revert missing {missing_revert}"
            )

        cls._appliers = appliers
        cls._reverters = reverters

    def __init__(
        self,
        store: ProjectionStore,
        notifier: FanOutNotifier,
        lookups: ProjectionLookups,
        admins: AdminDirectory | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.lookups = lookups
        self.admins = admins

    @classmethod
    def tags(cls) -> list[str]:
        return union_tags(cls.events)

    async def dispatch(self, event: DomainEvent, ctx: ProcessingContext) -> bool:
        """
        Apply one event.

        Returns False when the tag is unknown or the event was already
        applied; neither is an error.
        """
        method_name = self._appliers.get(event.event)
        if method_name is None:
            logger.warning(
                f"Unknown {self.domain} event",
                extra_data={"tag": event.event, **ctx.log_fields()},
            )
            return False

        with ingest_context(tag=event.event, tx_hash=ctx.tx_hash, event_index=ctx.event_index):
            if not await self.store.claim_event(event, ctx):
                return False
            logger.info(
                f"Applying {event.event}",
                extra_data={"domain": self.domain, "contract": ctx.contract_identifier},
            )
            await getattr(self, method_name)(event, ctx)
        return True

    async def revert(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        """Undo the projection writes of an applied event."""
        method_name = self._reverters.get(event.event)
        if method_name is None:
            logger.warning(
                f"No revert for {self.domain} event",
                extra_data={"tag": event.event, **ctx.log_fields()},
            )
            return

        with ingest_context(tag=event.event, tx_hash=ctx.tx_hash, event_index=ctx.event_index):
            logger.info(f"Reverting {event.event}", extra_data={"domain": self.domain})
            await getattr(self, method_name)(event, ctx)

    async def admin_principals(self) -> list[str]:
        if self.admins is None:
            return []
        return await self.admins.admins()
