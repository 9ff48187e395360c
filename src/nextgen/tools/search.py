"""Web and image search tools.

Both tools scrape public HTML result pages, so they are best-effort: the page layout can change at
any time.  Every failure (network, timeout, layout change, no hits) is reported as an
``{"error": ...}`` payload instead of an exception.
"""

import json
import logging
import re
from typing import (
    Any,
    Dict,
    List,
)
from urllib.parse import (
    parse_qs,
    urlparse,
)

import httpx
from bs4 import BeautifulSoup
from pydantic import (
    BaseModel,
    Field,
)

logger = logging.getLogger(__name__)

DUCKDUCKGO_HTML_URL = "https://html.duckduckgo.com/html/"
BING_IMAGES_URL = "https://www.bing.com/images/search"
_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Safari/537.36"
)


class SearchArgs(BaseModel):
    """Arguments shared by the search tools."""

    query: str = Field(..., min_length=1, description="The search query")


def _clean_text(value: str, max_chars: int = 300) -> str:
    """Normalize whitespace and bound output size."""
    cleaned = re.sub(r"\s+", " ", value or "").strip()
    if len(cleaned) <= max_chars:
        return cleaned
    return cleaned[:max_chars].rstrip() + "..."


def _resolve_result_url(href: str) -> str:
    """DuckDuckGo wraps result links in a redirect; unwrap the ``uddg`` target when present."""
    if not href:
        return ""
    parsed = urlparse(href if "://" in href else f"https:{href}")
    target = parse_qs(parsed.query).get("uddg")
    if target:
        return target[0]
    return href if "://" in href else f"https:{href}"


def parse_web_results(html: str, max_results: int) -> List[Dict[str, str]]:
    """Extract ``{title, url, snippet}`` entries from a DuckDuckGo HTML result page."""
    soup = BeautifulSoup(html, "html.parser")
    results: List[Dict[str, str]] = []
    for block in soup.select("div.result"):
        link = block.select_one("a.result__a")
        if link is None:
            continue
        url = _resolve_result_url(str(link.get("href", "")))
        if not url:
            continue
        snippet = block.select_one(".result__snippet")
        results.append(
            {
                "title": _clean_text(link.get_text(" "), max_chars=180),
                "url": url,
                "snippet": _clean_text(snippet.get_text(" ") if snippet else ""),
            }
        )
        if len(results) >= max_results:
            break
    return results


def parse_image_results(html: str, max_results: int) -> List[str]:
    """Extract full-size image URLs from a Bing image result page."""
    soup = BeautifulSoup(html, "html.parser")
    images: List[str] = []
    for anchor in soup.select("a.iusc"):
        raw = anchor.get("m")
        if not raw:
            continue
        try:
            meta = json.loads(str(raw))
        except json.JSONDecodeError:
            continue
        url = meta.get("murl") if isinstance(meta, dict) else None
        if url and url not in images:
            images.append(url)
        if len(images) >= max_results:
            break
    return images


class _ScrapingTool:
    """Shared HTTP plumbing for the scraping tools."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        max_results: int = 5,
    ):
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT, "Accept-Language": "en-US,en;q=0.8"},
        )
        self.timeout = timeout
        self.max_results = max_results

    async def _fetch(self, url: str, params: Dict[str, Any]) -> str:
        response = await self.client.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class WebSearchTool(_ScrapingTool):
    """Search the web and return ranked results with titles, links and snippets."""

    async def __call__(self, args: SearchArgs) -> Dict[str, Any]:
        query = args.query.strip()
        try:
            html = await self._fetch(DUCKDUCKGO_HTML_URL, {"q": query})
        except httpx.TimeoutException:
            logger.warning("Web search timed out for %r", query)
            return {"error": f"Web search timed out after {self.timeout:g} seconds."}
        except httpx.HTTPError as exc:
            logger.warning("Web search failed for %r: %s", query, exc)
            return {"error": f"Web search failed: {exc}"}

        results = parse_web_results(html, self.max_results)
        if not results:
            return {"error": f'No web results found for "{query}".'}
        logger.info("Web search returned %d results for %r", len(results), query)
        return {"results": results}


class ImageSearchTool(_ScrapingTool):
    """Find existing images on the web."""

    async def __call__(self, args: SearchArgs) -> Dict[str, Any]:
        query = args.query.strip()
        try:
            html = await self._fetch(BING_IMAGES_URL, {"q": query, "form": "HDRSC2"})
        except httpx.TimeoutException:
            logger.warning("Image search timed out for %r", query)
            return {"error": f"Image search timed out after {self.timeout:g} seconds."}
        except httpx.HTTPError as exc:
            logger.warning("Image search failed for %r: %s", query, exc)
            return {"error": f"Image search failed: {exc}"}

        images = parse_image_results(html, self.max_results)
        if not images:
            return {"error": f'No images found for "{query}".'}
        return {"images": images}
