"""通用网页检索 — SerpAPI (Google)."""

import logging
from typing import Any

import httpx

from codeguard.base import EvidenceSource, compact_query
from codeguard.errors import SourceError
from codeguard.models import Candidate, SourceKind
from codeguard.registry import register
from codeguard.sources.http import LazyClient, request_json

logger = logging.getLogger(__name__)

SERPAPI_BASE = "https://serpapi.com"

_MAX_QUERY_LENGTH = 200


class SerpApiClient:
    """SerpAPI 客户端."""

    def __init__(
        self,
        api_key: str = "",
        timeout: float = 20.0,
        api_base: str = SERPAPI_BASE,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self._http = LazyClient(api_base, timeout=timeout, transport=transport)

    def search(self, query: str, num: int = 10) -> list[dict[str, Any]]:
        """Google 检索. 返回自然结果的 title / link / snippet."""
        data = request_json(
            self._http.get(),
            "/search",
            params={
                "api_key": self.api_key,
                "q": query,
                "engine": "google",
                "num": num,
                "safe": "active",
            },
        )
        if data.get("error"):
            raise SourceError(f"SerpAPI 错误: {data['error']}")

        return [
            {
                "title": item.get("title", ""),
                "link": item.get("link", ""),
                "snippet": item.get("snippet", ""),
            }
            for item in data.get("organic_results", [])
        ]

    def close(self) -> None:
        self._http.close()


@register("web")
class WebSearchSource(EvidenceSource):
    """通用网页证据源. 需要 SerpAPI key."""

    def __init__(
        self,
        api_key: str = "",
        timeout: float = 20.0,
        min_interval: float = 0.0,
        client: SerpApiClient | None = None,
    ):
        super().__init__(timeout=timeout, min_interval=min_interval)
        self.api_key = api_key
        self.client = client or SerpApiClient(api_key=api_key, timeout=timeout)

    @property
    def kind(self) -> SourceKind:
        return "web"

    @property
    def name(self) -> str:
        return "Web"

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _search(self, query: str, language: str | None) -> list[Candidate]:
        search_query = compact_query(query, _MAX_QUERY_LENGTH)
        if language and language != "unknown":
            search_query += f" {language} code"

        return [
            Candidate(
                title=item["title"],
                link=item["link"],
                source_kind="web",
                snippet_text=item["snippet"],
            )
            for item in self.client.search(search_query)
        ]

    def close(self) -> None:
        self.client.close()
