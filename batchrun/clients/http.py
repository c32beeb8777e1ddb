from __future__ import annotations

from dataclasses import dataclass, field
import re

from bs4 import BeautifulSoup
import httpx

from batchrun.domain.models import OperationResult

SPACE_RE = re.compile(r"\s+")
STRIPPED_TAGS = ["script", "style", "noscript", "template"]

DEFAULT_HEADERS = {
    "User-Agent": "batchrun/0.1 (+resumable batch fetcher)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


@dataclass
class HttpFetchClient:
    """perform() collaborator that fetches each key as a URL."""

    timeout_ms: int = 180000
    max_text_chars: int = 500000
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = field(default=None, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    async def startup(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_ms / 1000,
                headers=DEFAULT_HEADERS,
                follow_redirects=True,
                transport=self.transport,
            )
            self._closed = False

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._closed = True

    async def __call__(self, key: str) -> OperationResult:
        return await self.fetch(key)

    async def fetch(self, url: str) -> OperationResult:
        if self._closed:
            return OperationResult.failed(
                "http client is closed",
                error_code="resource_unavailable",
                retry_classification="fatal",
            )
        if self._client is None:
            await self.startup()
        client = self._client
        if client is None:
            raise RuntimeError("http client failed to start")

        try:
            response = await client.get(url)
        except httpx.TimeoutException as exc:
            return OperationResult.failed(f"timed out fetching {url}: {exc}", error_code="timeout")
        except httpx.InvalidURL as exc:
            return OperationResult.failed(f"invalid url {url}: {exc}", error_code="http_client_error")
        except httpx.HTTPError as exc:
            return OperationResult.failed(f"{type(exc).__name__}: {exc}", error_code="fetch_failed")

        if response.status_code == 429 or response.status_code >= 500:
            return OperationResult.failed(f"HTTP {response.status_code} for {url}", error_code="fetch_failed")
        if response.status_code >= 400:
            return OperationResult.failed(f"HTTP {response.status_code} for {url}", error_code="http_client_error")

        soup = parse_document(response.text)
        text = extract_text(soup)
        if not text:
            return OperationResult.failed(f"empty document at {url}", error_code="content_missing")

        return OperationResult.ok(
            {
                "url": str(response.url),
                "status_code": response.status_code,
                "title": extract_title(soup),
                "text": text[: self.max_text_chars],
            },
            detail=f"HTTP {response.status_code}",
        )


def parse_document(body: str) -> BeautifulSoup:
    soup = BeautifulSoup(body, "html.parser")
    for element in soup(STRIPPED_TAGS):
        element.decompose()
    return soup


def extract_title(document: str | BeautifulSoup) -> str | None:
    soup = parse_document(document) if isinstance(document, str) else document
    if soup.title is None:
        return None
    return SPACE_RE.sub(" ", soup.title.get_text(" ", strip=True)).strip() or None


def extract_text(document: str | BeautifulSoup) -> str:
    soup = parse_document(document) if isinstance(document, str) else document
    return SPACE_RE.sub(" ", soup.get_text(separator=" ", strip=True)).strip()
