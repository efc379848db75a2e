"""
In-process store.

Committed state lives in two dictionaries. A transaction stages its
writes and applies them in commit() without awaiting, so on a single
event loop no reader can see half of a commit and two commits never
interleave.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..domain import ClickEvent, UrlMapping
from ..errors import ShortcodeConflict, StorageError
from .base import ClickLedger, ShortcodeRegistry, Store, UnitOfWork


class _Tables:
    def __init__(self):
        self.mappings: Dict[str, UrlMapping] = {}
        self.clicks: Dict[str, List[ClickEvent]] = {}


class _Changes:
    """Writes staged by one unit of work."""

    def __init__(self, read_only: bool = False):
        self.read_only = read_only
        self.ops: List[Tuple[str, object]] = []

    def stage(self, op: str, value: object) -> None:
        if self.read_only:
            raise StorageError("Snapshot is read-only")
        self.ops.append((op, value))

    def staged_adds(self) -> Dict[str, UrlMapping]:
        return {m.shortcode: m for op, m in self.ops if op in ("add", "put")}

    def commit(self, tables: _Tables) -> None:
        # check first so a conflict leaves committed state untouched
        for op, value in self.ops:
            if op == "add" and value.shortcode in tables.mappings:
                raise ShortcodeConflict(f"Shortcode '{value.shortcode}' is already in use")
        for op, value in self.ops:
            if op in ("add", "put"):
                tables.mappings[value.shortcode] = value
            elif op == "increment":
                mapping = tables.mappings.get(value)
                if mapping is not None:
                    tables.mappings[value] = mapping.model_copy(
                        update={"click_count": mapping.click_count + 1}
                    )
            elif op == "append":
                tables.clicks.setdefault(value.shortcode, []).append(value)
        self.ops.clear()


class MemoryShortcodeRegistry(ShortcodeRegistry):
    def __init__(self, tables: _Tables, changes: _Changes):
        self.tables = tables
        self.changes = changes

    async def exists(self, code: str) -> bool:
        return code in self.tables.mappings or code in self.changes.staged_adds()

    async def get(self, code: str) -> Optional[UrlMapping]:
        mapping = self.changes.staged_adds().get(code) or self.tables.mappings.get(code)
        return mapping.model_copy() if mapping else None

    async def put(self, mapping: UrlMapping) -> None:
        self.changes.stage("put", mapping.model_copy())

    async def add(self, mapping: UrlMapping) -> None:
        if await self.exists(mapping.shortcode):
            raise ShortcodeConflict(f"Shortcode '{mapping.shortcode}' is already in use")
        self.changes.stage("add", mapping.model_copy())

    async def increment_clicks(self, code: str) -> None:
        self.changes.stage("increment", code)

    async def list_all(self) -> List[UrlMapping]:
        mappings = sorted(self.tables.mappings.values(), key=lambda m: m.created_at, reverse=True)
        return [m.model_copy() for m in mappings]


class MemoryClickLedger(ClickLedger):
    def __init__(self, tables: _Tables, changes: _Changes):
        self.tables = tables
        self.changes = changes

    async def append(self, shortcode: str, event: ClickEvent) -> None:
        if event.shortcode != shortcode:
            event = event.model_copy(update={"shortcode": shortcode})
        self.changes.stage("append", event)

    async def history(self, shortcode: str) -> List[ClickEvent]:
        # reversed first so equal timestamps come out newest-appended first
        events = list(reversed(self.tables.clicks.get(shortcode, [])))
        return sorted(events, key=lambda e: e.timestamp, reverse=True)


class MemoryStore(Store):
    def __init__(self):
        self._tables: Optional[_Tables] = None

    async def open(self) -> None:
        if self._tables is None:
            self._tables = _Tables()

    async def close(self) -> None:
        # state is kept so a reopened store sees the same data
        pass

    def _require_tables(self) -> _Tables:
        if self._tables is None:
            raise StorageError("Store is not open")
        return self._tables

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        tables = self._require_tables()
        changes = _Changes()
        yield UnitOfWork(MemoryShortcodeRegistry(tables, changes), MemoryClickLedger(tables, changes))
        changes.commit(tables)

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[UnitOfWork]:
        tables = self._require_tables()
        changes = _Changes(read_only=True)
        yield UnitOfWork(MemoryShortcodeRegistry(tables, changes), MemoryClickLedger(tables, changes))
