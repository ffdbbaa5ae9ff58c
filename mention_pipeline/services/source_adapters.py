"""
Platform source adapters

Each adapter turns one source account page into a list of RawItem records.
Pages are rendered with a headless Playwright Chromium browser; the browser
lives only for the duration of a single fetch.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from mention_pipeline.core.exceptions import PermanentParseError, TransientFetchError
from mention_pipeline.db.models import Platform

logger = logging.getLogger(__name__)


@dataclass
class RawItem:
    """One review/post as extracted from a platform page"""
    external_id: str
    author: str
    text: str
    stars: Optional[int]
    published_at_hint: Optional[str]
    url: Optional[str] = None


@dataclass(frozen=True)
class SourceTarget:
    """Detached snapshot of a source account handed to adapters"""
    id: str
    tenant_id: str
    location_id: str
    platform: str
    account_url: str
    polling_frequency_minutes: int

    @classmethod
    def from_model(cls, source) -> "SourceTarget":
        return cls(
            id=source.id,
            tenant_id=source.tenant_id,
            location_id=source.location_id,
            platform=source.platform,
            account_url=source.account_url,
            polling_frequency_minutes=source.polling_frequency_minutes,
        )


class SourceAdapter(ABC):
    """Fetch capability for one platform"""

    platform: str

    @abstractmethod
    async def fetch(self, target: SourceTarget) -> List[RawItem]:
        """
        Fetch the newest items for a source

        Raises:
            TransientFetchError: page could not be loaded
            PermanentParseError: page loaded but could not be parsed
        """


class PlaywrightReviewAdapter(SourceAdapter):
    """Base adapter that renders the account page and evaluates an extractor"""

    item_selector: str = ""
    extract_script: str = ""
    wait_until: str = "networkidle"

    def __init__(self, timeout_seconds: float = 30.0, max_items: int = 10, headless: bool = True):
        self.timeout_ms = int(timeout_seconds * 1000)
        self.max_items = max_items
        self.headless = headless

    async def fetch(self, target: SourceTarget) -> List[RawItem]:
        if not target.account_url.startswith(("http://", "https://")):
            raise PermanentParseError(f"Invalid account URL: {target.account_url}")

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                page = await browser.new_page()
                try:
                    await page.goto(target.account_url, wait_until=self.wait_until, timeout=self.timeout_ms)
                except (PlaywrightTimeoutError, PlaywrightError) as e:
                    raise TransientFetchError(f"{self.platform} page load failed: {e}") from e

                try:
                    records = await page.eval_on_selector_all(self.item_selector, self.extract_script)
                except PlaywrightError as e:
                    raise PermanentParseError(f"{self.platform} page parse failed: {e}") from e
            finally:
                await browser.close()

        return self.to_items(target, records[: self.max_items])

    def to_items(self, target: SourceTarget, records: List[Dict]) -> List[RawItem]:
        items = []
        for record in records:
            external_id = record.get("id")
            if not external_id:
                continue
            items.append(RawItem(
                external_id=str(external_id),
                author=(record.get("author") or "Anonymous").strip(),
                text=(record.get("text") or "").strip(),
                stars=_stars(record.get("stars")),
                published_at_hint=record.get("date") or None,
                url=self.item_url(target, str(external_id)),
            ))
        return items

    def item_url(self, target: SourceTarget, external_id: str) -> Optional[str]:
        return None


def _stars(value) -> Optional[int]:
    try:
        stars = int(value)
    except (TypeError, ValueError):
        return None
    # A zero count means the rating widget was not found
    if stars < 1:
        return None
    return min(stars, 5)


class GoogleReviewsAdapter(PlaywrightReviewAdapter):
    platform = Platform.GOOGLE.value
    item_selector = "[data-review-id]"
    extract_script = """
        (elements) => elements.map(el => ({
            id: el.getAttribute('data-review-id'),
            author: el.querySelector('[aria-label*="Photo"]')?.alt || 'Anonymous',
            text: el.querySelector('[data-expandable-review]')?.textContent || '',
            stars: el.querySelectorAll('[aria-label*="star"]').length,
            date: el.querySelector('[class*="date"]')?.textContent || '',
        }))
    """

    def item_url(self, target: SourceTarget, external_id: str) -> Optional[str]:
        return f"{target.account_url}#review-{external_id}"


class YelpReviewsAdapter(PlaywrightReviewAdapter):
    platform = Platform.YELP.value
    item_selector = '[data-testid="review"]'
    extract_script = """
        (elements) => elements.map(el => ({
            id: el.getAttribute('data-review-id') || el.getAttribute('id'),
            author: el.querySelector('[data-testid="user-name"]')?.textContent || 'Anonymous',
            text: el.querySelector('[class*="raw"]')?.textContent || '',
            stars: el.querySelectorAll('[class*="star"][class*="selected"]').length,
            date: el.querySelector('[class*="date"]')?.textContent || '',
        }))
    """


class FacebookReviewsAdapter(SourceAdapter):
    """Facebook pages require an authenticated session; yields nothing until one is configured"""

    platform = Platform.FACEBOOK.value

    async def fetch(self, target: SourceTarget) -> List[RawItem]:
        logger.warning(f"Facebook scraping requires authentication, skipping source {target.id}")
        return []


class AdapterRegistry:
    """Platform -> adapter lookup"""

    def __init__(self, adapters: Optional[List[SourceAdapter]] = None):
        self._adapters: Dict[str, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter):
        self._adapters[adapter.platform] = adapter

    def get(self, platform: str) -> Optional[SourceAdapter]:
        return self._adapters.get(platform)

    def platforms(self) -> List[str]:
        return sorted(self._adapters)


def build_default_registry(timeout_seconds: float = 30.0, max_items: int = 10) -> AdapterRegistry:
    return AdapterRegistry([
        GoogleReviewsAdapter(timeout_seconds=timeout_seconds, max_items=max_items),
        YelpReviewsAdapter(timeout_seconds=timeout_seconds, max_items=max_items),
        FacebookReviewsAdapter(),
    ])
