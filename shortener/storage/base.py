"""
Storage contracts for shortcode mappings and click events.

The service never talks to a database directly. It asks a Store for a
unit of work, which binds one ShortcodeRegistry and one ClickLedger to
the same transaction:

    async with store.transaction() as uow:
        await uow.ledger.append(code, event)
        await uow.registry.increment_clicks(code)

Both writes commit together or not at all. Read-only work goes through
store.snapshot(), whose reads all observe one consistent state.

Implementations: SqlStore (SQLAlchemy async engine) and MemoryStore
(in-process dictionaries, used by tests).
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, List, Optional

from ..domain import ClickEvent, UrlMapping


class ShortcodeRegistry(ABC):
    """Mappings keyed by shortcode. Callers validate before writing."""

    @abstractmethod
    async def exists(self, code: str) -> bool:
        pass

    @abstractmethod
    async def get(self, code: str) -> Optional[UrlMapping]:
        pass

    @abstractmethod
    async def put(self, mapping: UrlMapping) -> None:
        """Upsert by shortcode; overwrites every field."""
        pass

    @abstractmethod
    async def add(self, mapping: UrlMapping) -> None:
        """
        Insert a new mapping.

        Raises:
            ShortcodeConflict: the shortcode is already stored, including
                when a concurrent writer took it first.
        """
        pass

    @abstractmethod
    async def increment_clicks(self, code: str) -> None:
        """Add exactly one to click_count without reading it first."""
        pass

    @abstractmethod
    async def list_all(self) -> List[UrlMapping]:
        """Every mapping, newest created first."""
        pass


class ClickLedger(ABC):
    """Append-only click history."""

    @abstractmethod
    async def append(self, shortcode: str, event: ClickEvent) -> None:
        pass

    @abstractmethod
    async def history(self, shortcode: str) -> List[ClickEvent]:
        """Events newest first; an empty list when there are none."""
        pass


class UnitOfWork:
    def __init__(self, registry: ShortcodeRegistry, ledger: ClickLedger):
        self.registry = registry
        self.ledger = ledger


class Store(ABC):
    """Owns storage resources. Use `async with store:` or open()/close()."""

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[UnitOfWork]:
        """Read-write unit of work; commits on clean exit, else rolls back."""
        pass

    @abstractmethod
    def snapshot(self) -> AsyncContextManager[UnitOfWork]:
        """Read-only unit of work over one consistent state."""
        pass

    async def __aenter__(self) -> "Store":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
