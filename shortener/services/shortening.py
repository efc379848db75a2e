import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..domain import ClickEvent, ShortenResult, UrlMapping, UrlStats, UrlSummary
from ..errors import (
    Expired,
    InvalidShortcode,
    InvalidUrl,
    InvalidValidity,
    NotFound,
    ShortcodeConflict,
    StorageError,
)
from ..storage.base import Store
from ..utils import coarse_location, generate_random_code, is_http_url, is_valid_shortcode
from .log_sink import LogSink

logger = logging.getLogger(__name__)

MAX_VALIDITY_MINUTES = 525600  # one year

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class ShorteningService:
    """
    Shortcode lifecycle and click recording on top of a Store.

    The store is injected and owned by the caller, which opens it before
    use and closes it afterwards. Every significant outcome is reported to
    the log sink.
    """

    PACKAGE = "urlshortener"

    def __init__(
        self,
        store: Store,
        base_url: str,
        sink: Optional[LogSink] = None,
        clock: Callable[[], datetime] = utcnow,
        code_generator: Callable[[int], str] = generate_random_code,
        code_length: int = 8,
        default_validity_minutes: int = 30,
    ):
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.sink = sink or LogSink()
        self.clock = clock
        self.code_generator = code_generator
        self.code_length = code_length
        self.default_validity_minutes = default_validity_minutes

    def short_link(self, shortcode: str) -> str:
        return f"{self.base_url}/{shortcode}"

    async def shorten(
        self,
        url: str,
        validity_minutes: Optional[int] = None,
        custom_code: Optional[str] = None,
    ) -> ShortenResult:
        """
        Create a mapping for url.

        Raises:
            InvalidUrl, InvalidValidity, InvalidShortcode: bad input, nothing written
            ShortcodeConflict: custom_code is taken (checked up front and at insert)
            StorageError: persistence failed
        """
        validity = self._validate(url, validity_minutes, custom_code)

        try:
            if custom_code is not None:
                mapping = await self._create_with_custom_code(url, validity, custom_code)
            else:
                mapping = await self._create_with_generated_code(url, validity)
        except ShortcodeConflict:
            self.sink.log("warning", self.PACKAGE, f"Shortcode already exists: {custom_code}")
            raise
        except StorageError as e:
            self.sink.log("error", self.PACKAGE, f"Error creating short URL: {e}")
            raise

        short_link = self.short_link(mapping.shortcode)
        self.sink.log("info", self.PACKAGE, f"URL shortened successfully: {url} -> {short_link}")
        return ShortenResult(shortcode=mapping.shortcode, short_link=short_link, expiry_at=mapping.expiry_at)

    def _validate(self, url, validity_minutes, custom_code) -> int:
        if not is_http_url(url):
            self.sink.log("warning", self.PACKAGE, f"Validation failed: invalid URL {url!r}")
            raise InvalidUrl("URL must be an absolute http or https URL")

        if validity_minutes is None:
            validity_minutes = self.default_validity_minutes
        if (
            isinstance(validity_minutes, bool)
            or not isinstance(validity_minutes, int)
            or not 1 <= validity_minutes <= MAX_VALIDITY_MINUTES
        ):
            self.sink.log("warning", self.PACKAGE, f"Validation failed: validity {validity_minutes!r}")
            raise InvalidValidity(f"Validity must be between 1 and {MAX_VALIDITY_MINUTES} minutes")

        if custom_code is not None and not (isinstance(custom_code, str) and is_valid_shortcode(custom_code)):
            self.sink.log("warning", self.PACKAGE, f"Validation failed: shortcode {custom_code!r}")
            raise InvalidShortcode(
                "Shortcode must be 3-20 characters, alphanumeric, underscore, or dash only"
            )
        return validity_minutes

    def _new_mapping(self, shortcode: str, url: str, validity: int) -> UrlMapping:
        now = self.clock()
        return UrlMapping(
            shortcode=shortcode,
            original_url=url,
            created_at=now,
            expiry_at=now + timedelta(minutes=validity),
            validity_minutes=validity,
            click_count=0,
        )

    async def _create_with_custom_code(self, url: str, validity: int, code: str) -> UrlMapping:
        async with self.store.snapshot() as uow:
            if await uow.registry.exists(code):
                raise ShortcodeConflict(f"Shortcode '{code}' is already in use")

        mapping = self._new_mapping(code, url, validity)
        # The insert is still guarded by the storage uniqueness constraint
        async with self.store.transaction() as uow:
            await uow.registry.add(mapping)
        return mapping

    async def _create_with_generated_code(self, url: str, validity: int) -> UrlMapping:
        while True:
            code = await self._draw_unused_code()
            mapping = self._new_mapping(code, url, validity)
            try:
                async with self.store.transaction() as uow:
                    await uow.registry.add(mapping)
                return mapping
            except ShortcodeConflict:
                logger.info(f"Generated shortcode {code} was taken concurrently, drawing again")

    async def _draw_unused_code(self) -> str:
        async with self.store.snapshot() as uow:
            while True:
                code = self.code_generator(self.code_length)
                if not await uow.registry.exists(code):
                    return code
                logger.debug(f"Generated shortcode {code} collides, drawing again")

    async def resolve(
        self,
        code: str,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> str:
        """Record one click on an active code and return its target URL."""
        try:
            async with self.store.snapshot() as uow:
                mapping = await uow.registry.get(code)
            self._ensure_active(code, mapping, "Redirect failed - ")

            event = ClickEvent(
                shortcode=code,
                timestamp=self.clock(),
                referrer=referrer or None,
                user_agent=user_agent or None,
                ip=ip or None,
                location=coarse_location(ip),
            )
            # One transaction: a click is never visible without its count
            async with self.store.transaction() as uow:
                await uow.ledger.append(code, event)
                await uow.registry.increment_clicks(code)
        except StorageError as e:
            self.sink.log("error", self.PACKAGE, f"Error during redirect: {e}")
            raise

        self.sink.log("info", self.PACKAGE, f"Redirect successful: {code} -> {mapping.original_url}")
        return mapping.original_url

    async def stats(self, code: str) -> UrlStats:
        try:
            async with self.store.snapshot() as uow:
                mapping = await uow.registry.get(code)
                self._ensure_active(code, mapping)
                history = await uow.ledger.history(code)
        except StorageError as e:
            self.sink.log("error", self.PACKAGE, f"Error retrieving statistics: {e}")
            raise

        self.sink.log("info", self.PACKAGE, f"Statistics retrieved for: {code}")
        return UrlStats(
            shortcode=mapping.shortcode,
            original_url=mapping.original_url,
            total_clicks=mapping.click_count,
            created_at=mapping.created_at,
            expiry_at=mapping.expiry_at,
            click_history=history,
        )

    async def list_all(self) -> List[UrlSummary]:
        try:
            async with self.store.snapshot() as uow:
                mappings = await uow.registry.list_all()
        except StorageError as e:
            self.sink.log("error", "api", f"Error retrieving URLs: {e}")
            raise

        now = self.clock()
        summaries = [
            UrlSummary(
                shortcode=m.shortcode,
                short_link=self.short_link(m.shortcode),
                original_url=m.original_url,
                total_clicks=m.click_count,
                created_at=m.created_at,
                expiry_at=m.expiry_at,
                is_expired=m.is_expired(now),
            )
            for m in mappings
        ]
        self.sink.log("info", "api", f"Retrieved {len(summaries)} URLs")
        return summaries

    def _ensure_active(self, code: str, mapping: Optional[UrlMapping], context: str = "") -> None:
        if mapping is None:
            self.sink.log("warning", self.PACKAGE, f"{context}Shortcode not found: {code}")
            raise NotFound("The requested shortcode does not exist")
        if mapping.is_expired(self.clock()):
            self.sink.log("warning", self.PACKAGE, f"{context}Expired shortcode accessed: {code}")
            raise Expired("This short URL has expired")
