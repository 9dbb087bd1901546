from __future__ import annotations

import html
import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from parley.utils.logger import logger

from ..config.schema import WebSearchConfig
from .function_base import FunctionTool

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
SERPAPI_URL = "https://serpapi.com/search.json"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"


def _validate_url(url: str) -> tuple[bool, str]:
    try:
        p = urlparse(url)
    except ValueError as exc:
        return False, str(exc)
    if p.scheme not in ("http", "https"):
        return False, f"Only http/https allowed, got '{p.scheme or 'none'}'"
    if not p.netloc:
        return False, "Missing domain"
    return True, ""


def _normalize(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def extract_readable_text(markup: str) -> str:
    """Title plus main body text with scripts, styles and chrome removed."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "header", "footer", "aside"]):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    root = soup.find("article") or soup.find("main") or soup.body or soup
    body = _normalize(html.unescape(root.get_text(separator="\n", strip=True)))
    return f"{title}\n\n{body}".strip() if title else body


def format_results(results: List[Dict[str, Any]], limit: int) -> str:
    lines = ["Search Results:"]
    for i, item in enumerate(results[:limit], 1):
        lines.append(
            f"[{i}] {item.get('title', '')}\n"
            f"Snippet: {item.get('snippet', '')}\n"
            f"Source: {item.get('link', '')}\n"
        )
    return "\n".join(lines).strip()


class WebSearchTool(FunctionTool):
    def __init__(self, config: WebSearchConfig):
        self._config = config

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return (
            "Search the web for current information. Returns titles, snippets "
            "and URLs of the top results."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query."}
            },
            "required": ["query"],
        }

    def progress_message(self, params: dict[str, Any]) -> Optional[str]:
        return f'_searching the web for "{params.get("query", "")}"_'

    async def _serpapi(self, client: httpx.AsyncClient, query: str) -> str:
        response = await client.get(
            SERPAPI_URL,
            params={"engine": "google", "q": query, "api_key": self._config.serpapi_key},
        )
        response.raise_for_status()
        data = response.json()
        sections = []
        box = data.get("answer_box") or {}
        if box.get("title") or box.get("snippet"):
            sections.append(
                f"Answer Box: {box.get('title', '')}\n{box.get('snippet', '')}".strip()
            )
        organic = data.get("organic_results") or []
        if organic:
            sections.append(format_results(organic, self._config.max_results))
        return "\n\n".join(sections)

    async def _google_cse(self, client: httpx.AsyncClient, query: str) -> str:
        response = await client.get(
            GOOGLE_CSE_URL,
            params={
                "key": self._config.google_api_key,
                "cx": self._config.google_cse_id,
                "q": query,
            },
        )
        response.raise_for_status()
        data = response.json()
        items = data.get("items") or []
        if not items:
            return ""
        prefix = ""
        spelling = (data.get("spelling") or {}).get("correctedQuery")
        if spelling:
            prefix = f"Did you mean: {spelling}\n\n"
        return prefix + format_results(items, self._config.max_results)

    async def execute(self, query: str, **kwargs: Any) -> str:
        del kwargs
        if not self._config.configured:
            return json.dumps(
                {"error": "web_search is not configured (no search API key)."}
            )
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                if self._config.serpapi_key:
                    content = await self._serpapi(client, query)
                else:
                    content = await self._google_cse(client, query)
        except Exception as exc:
            logger.error('web_search failed for "%s": %s', query, exc)
            return json.dumps({"error": str(exc), "query": query})
        return json.dumps({"content": content or "No search results found."})


class FetchUrlTool(FunctionTool):
    def __init__(self, max_chars: int = 20000):
        self.max_chars = max_chars

    @property
    def name(self) -> str:
        return "fetch_url_content"

    @property
    def description(self) -> str:
        return "Fetch a web page and return its readable text content."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "http(s) URL to fetch."}
            },
            "required": ["url"],
        }

    def progress_message(self, params: dict[str, Any]) -> Optional[str]:
        return f"_fetching content from {params.get('url', '')}_"

    async def execute(self, url: str, **kwargs: Any) -> str:
        del kwargs
        ok, err = _validate_url(url)
        if not ok:
            return json.dumps({"error": f"URL validation failed: {err}", "url": url})
        try:
            async with httpx.AsyncClient(
                follow_redirects=True, max_redirects=5, timeout=30.0
            ) as client:
                response = await client.get(url, headers={"User-Agent": USER_AGENT})
                response.raise_for_status()
        except Exception as exc:
            logger.error("fetch_url_content failed for %s: %s", url, exc)
            return json.dumps({"error": str(exc), "url": url})

        ctype = response.headers.get("content-type", "")
        if "text/html" in ctype:
            text = extract_readable_text(response.text)
        elif "text/plain" in ctype:
            text = response.text
        else:
            return json.dumps(
                {"error": f"Unsupported content type: {ctype or 'unknown'}", "url": url}
            )

        truncated = len(text) > self.max_chars
        if truncated:
            text = text[: self.max_chars]
        return json.dumps(
            {
                "url": url,
                "finalUrl": str(response.url),
                "truncated": truncated,
                "content": text,
            }
        )


__all__ = ["FetchUrlTool", "WebSearchTool", "extract_readable_text"]
