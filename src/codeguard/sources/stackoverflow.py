"""问答社区检索 — Stack Exchange API (Stack Overflow).

对每个有回答的问题拉取最高票回答，从 HTML 中抽取代码作为候选文本。
拉取回答是逐题的追加请求，数量有上限。
单个回答拉取失败只跳过该问题，已拿到的候选照常返回。
"""

import html
import logging
import re
from collections.abc import Callable
from typing import Any

import httpx

from codeguard.base import EvidenceSource, compact_query
from codeguard.errors import SourceError, SourceRateLimited
from codeguard.models import Candidate, SourceKind
from codeguard.registry import register
from codeguard.sources.http import LazyClient, request_json

logger = logging.getLogger(__name__)

STACKEXCHANGE_API = "https://api.stackexchange.com/2.3"

_MAX_QUERY_LENGTH = 140
_CODE_BLOCK = re.compile(r"<pre[^>]*>\s*<code[^>]*>(.*?)</code>\s*</pre>", re.DOTALL | re.IGNORECASE)
_INLINE_CODE = re.compile(r"<code[^>]*>([^<]*)</code>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")

# 语言名 → Stack Overflow 标签
_TAG_ALIASES: dict[str, str] = {
    "cpp": "c++",
    "csharp": "c#",
    "bash": "bash",
    "vue": "vue.js",
}
_UNTAGGED = frozenset({"unknown", "text", "markdown", "json", "yaml", "xml"})


def language_tag(language: str | None) -> str | None:
    """语言名映射为 Stack Overflow 标签，无法映射时返回 None."""
    if not language or language in _UNTAGGED:
        return None
    return _TAG_ALIASES.get(language, language)


def extract_code_from_answer(body: str) -> str:
    """从回答 HTML 中抽取代码: 先取代码块，再取其余行内代码."""
    fragments = [_TAG.sub("", m) for m in _CODE_BLOCK.findall(body)]
    remainder = _CODE_BLOCK.sub(" ", body)
    fragments.extend(_INLINE_CODE.findall(remainder))
    return "\n".join(html.unescape(f) for f in fragments if f.strip())


class StackExchangeClient:
    """Stack Exchange API 客户端."""

    def __init__(
        self,
        key: str = "",
        timeout: float = 20.0,
        site: str = "stackoverflow",
        api_base: str = STACKEXCHANGE_API,
        transport: httpx.BaseTransport | None = None,
        on_backoff: Callable[[float], None] | None = None,
    ):
        self.key = key
        self.site = site
        self.on_backoff = on_backoff
        self._http = LazyClient(api_base, timeout=timeout, transport=transport)

    def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        params = {"site": self.site, **params}
        if self.key:
            params["key"] = self.key
        data = request_json(self._http.get(), url, params=params)

        # backoff 字段要求在指定秒数内不再调用同一方法
        backoff = data.get("backoff")
        if backoff and self.on_backoff:
            logger.info("Stack Exchange 要求退避 %ss", backoff)
            self.on_backoff(float(backoff))
        if data.get("quota_remaining") == 0:
            logger.warning("Stack Exchange 配额已用尽")
        return data

    def search_questions(
        self, query: str, tag: str | None = None, page_size: int = 10
    ) -> list[dict[str, Any]]:
        """按相关度检索问题. 返回 id / title / link / answer_count."""
        params: dict[str, Any] = {
            "q": query,
            "sort": "relevance",
            "order": "desc",
            "pagesize": page_size,
        }
        if tag:
            params["tagged"] = tag
        data = self._get("/search/advanced", params)
        return [
            {
                "id": item.get("question_id"),
                "title": html.unescape(item.get("title", "")),
                "link": item.get("link", ""),
                "answer_count": item.get("answer_count", 0),
            }
            for item in data.get("items", [])
        ]

    def get_top_answer(self, question_id: int) -> dict[str, Any] | None:
        """获取问题的最高票回答. 返回 body (HTML) / score / answer_id."""
        data = self._get(
            f"/questions/{question_id}/answers",
            {"sort": "votes", "order": "desc", "pagesize": 1, "filter": "withbody"},
        )
        items = data.get("items") or []
        if not items:
            return None
        answer = items[0]
        return {
            "body": answer.get("body", ""),
            "score": answer.get("score", 0),
            "answer_id": answer.get("answer_id"),
        }

    def close(self) -> None:
        self._http.close()


@register("qa")
class StackOverflowSource(EvidenceSource):
    """Stack Overflow 证据源. 无 key 时使用匿名配额."""

    def __init__(
        self,
        key: str = "",
        timeout: float = 20.0,
        max_followups: int = 10,
        min_interval: float = 0.05,
        client: StackExchangeClient | None = None,
    ):
        super().__init__(timeout=timeout, min_interval=min_interval)
        self.max_followups = max_followups
        self.client = client or StackExchangeClient(key=key, timeout=timeout)
        if self.client.on_backoff is None:
            self.client.on_backoff = self.limiter.block

    @property
    def kind(self) -> SourceKind:
        return "qa"

    @property
    def name(self) -> str:
        return "Stack Overflow"

    def _search(self, query: str, language: str | None) -> list[Candidate]:
        questions = self.client.search_questions(
            compact_query(query, _MAX_QUERY_LENGTH, strip_punctuation=True), language_tag(language)
        )

        candidates: list[Candidate] = []
        followups = 0
        for question in questions:
            if question["answer_count"] <= 0:
                continue
            if followups >= self.max_followups:
                logger.debug("回答拉取已达上限 (%d)，剩余问题跳过", self.max_followups)
                break
            if not self.limiter.acquire(max_wait=self.timeout):
                logger.warning("Stack Overflow 限流，停止拉取回答")
                break

            followups += 1
            try:
                answer = self.client.get_top_answer(question["id"])
            except SourceRateLimited as e:
                self.limiter.block(e.retry_after)
                logger.warning("Stack Overflow 触发速率限制，停止拉取回答: %s", e)
                break
            except SourceError as e:
                logger.warning("拉取回答失败，已跳过: 问题 %s (%s)", question["id"], e)
                continue
            if not answer:
                continue

            candidates.append(
                Candidate(
                    title=question["title"],
                    link=question["link"],
                    source_kind="qa",
                    snippet_text=extract_code_from_answer(answer["body"]),
                    native_score=float(answer["score"]),
                )
            )

        return candidates

    def close(self) -> None:
        self.client.close()
