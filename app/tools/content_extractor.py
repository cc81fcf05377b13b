from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from app.config import settings
from app.errors import UpstreamError
from app.tools import web_utils

NAV_MARKERS = (
    "main menu",
    "navigation",
    "skip to",
    "cookie",
    "subscribe",
    "sign in",
)

PLACEHOLDER_TITLE = "Error Extracting Content"


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str = "raw"


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars]


def _extract_title(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    title = soup.title.string if soup.title and soup.title.string else ""
    return _normalize_text(title)


def _looks_low_quality(text: str) -> bool:
    normalized = text.lower()
    marker_hits = sum(normalized.count(marker) for marker in NAV_MARKERS)
    if len(text) < 200:
        return True
    if marker_hits >= 4 and len(text) < 2500:
        return True
    return False


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return _normalize_text(soup.get_text("\n"))


def extract_main_content(url: str, raw_html: str, *, max_chars: int | None = None) -> ExtractedContent:
    """Pull the title and main article text out of an HTML document."""
    target_chars = max_chars if max_chars is not None else int(settings.extractor_max_chars)
    title = _extract_title(raw_html)

    primary_text = _extract_with_trafilatura(raw_html)
    if primary_text and not _looks_low_quality(primary_text):
        return ExtractedContent(
            url=url,
            title=title,
            text=_truncate(primary_text, target_chars),
            method="trafilatura",
        )

    fallback_text = _extract_with_soup(raw_html)
    if len(fallback_text) < len(primary_text):
        fallback_text = primary_text
    return ExtractedContent(
        url=url,
        title=title,
        text=_truncate(fallback_text, target_chars),
        method="raw",
    )


class ContentExtractor:
    """Fetch a URL and turn it into `{title, text}`.

    Every failure (bad URL, network, HTTP status, parse) surfaces as
    `UpstreamError`; callers decide how to degrade.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        max_chars: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else float(settings.extractor_timeout_seconds)
        self.max_chars = max_chars if max_chars is not None else int(settings.extractor_max_chars)
        self._transport = transport

    async def fetch(self, url: str) -> str:
        if not web_utils.is_valid_url(url):
            raise UpstreamError(f"Refusing to fetch invalid URL: {url}", service="extractor")
        headers = {"User-Agent": settings.extractor_user_agent}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Fetch failed for {url}: {exc}", service="extractor") from exc

    async def extract(self, url: str) -> ExtractedContent:
        raw_html = await self.fetch(url)
        try:
            return await asyncio.to_thread(extract_main_content, url, raw_html, max_chars=self.max_chars)
        except Exception as exc:
            raise UpstreamError(f"Extraction failed for {url}: {exc}", service="extractor") from exc
