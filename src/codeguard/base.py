"""证据源抽象基类."""

import logging
import re
from abc import ABC, abstractmethod

from codeguard.errors import SourceRateLimited
from codeguard.models import Candidate, SourceKind
from codeguard.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]+")


def compact_query(text: str, max_length: int = 128, strip_punctuation: bool = False) -> str:
    """把代码片段压缩成检索词: 合并空白，在词边界处截断."""
    if strip_punctuation:
        text = _PUNCTUATION.sub(" ", text)
    query = _WHITESPACE.sub(" ", text).strip()
    if len(query) <= max_length:
        return query
    cut = query.rfind(" ", 0, max_length + 1)
    return query[: cut if cut > 0 else max_length]


class EvidenceSource(ABC):
    """证据源抽象基类.

    所有证据源（代码托管 / 问答社区 / 通用网页）都需要实现:
    - kind: 变体标签 (repo / qa / web)
    - name: 显示名称
    - _search(): 实际检索，可以抛异常

    search() 是失败边界: 未配置、限流或任何异常都返回空列表，
    调用方无需区分"未配置"和"没找到"。
    """

    def __init__(self, timeout: float = 20.0, min_interval: float = 0.0):
        self.timeout = timeout
        self.limiter = RateLimiter(min_interval=min_interval)

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        """变体标签."""

    @property
    @abstractmethod
    def name(self) -> str:
        """显示名称."""

    @property
    def configured(self) -> bool:
        """是否具备调用条件（凭据等）."""
        return True

    def search(self, query: str, language: str | None = None) -> list[Candidate]:
        """检索与 query 相似的外部片段. 永不抛异常."""
        if not self.configured:
            logger.debug("%s 未配置，跳过检索", self.name)
            return []
        if not query or not query.strip():
            return []

        if not self.limiter.acquire(max_wait=self.timeout):
            logger.warning("%s 处于限流窗口 (剩余 %.0fs)，跳过检索", self.name, self.limiter.blocked_for)
            return []

        try:
            return self._search(query, language)
        except SourceRateLimited as e:
            self.limiter.block(e.retry_after)
            logger.warning("%s 触发速率限制，%.0fs 内暂停调用: %s", self.name, e.retry_after, e)
            return []
        except Exception as e:
            logger.warning("%s 检索失败: %s", self.name, e)
            return []

    @abstractmethod
    def _search(self, query: str, language: str | None) -> list[Candidate]:
        """执行检索."""

    def close(self) -> None:
        """释放网络连接."""
