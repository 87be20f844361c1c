"""证据源共用的 HTTP 请求与错误分类."""

import logging
import threading
import time
from typing import Any

import httpx

from codeguard import __version__
from codeguard.errors import SourceError, SourceRateLimited

logger = logging.getLogger(__name__)

USER_AGENT = f"knowlyr-codeguard/{__version__}"
DEFAULT_RETRY_AFTER = 60.0


class LazyClient:
    """按需创建 httpx.Client，多线程共享同一个连接池."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url
        self.headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def get(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self.base_url,
                    headers=self.headers,
                    timeout=self.timeout,
                    transport=self.transport,
                    follow_redirects=True,
                )
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


def _retry_after(resp: httpx.Response) -> float:
    """从响应头推断限流窗口（秒）."""
    retry_after = resp.headers.get("retry-after")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass

    reset = resp.headers.get("x-ratelimit-reset")
    if reset:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            pass

    return DEFAULT_RETRY_AFTER


def _is_rate_limited(resp: httpx.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.headers.get("x-ratelimit-remaining") == "0":
        return True
    if "retry-after" in resp.headers:
        return True
    body = resp.text.lower()
    return "rate limit" in body or "throttle_violation" in body


def request(
    client: httpx.Client,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """发送 GET 请求并把失败归类为 SourceError / SourceRateLimited."""
    try:
        resp = client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as e:
        raise SourceError(f"请求超时: {url}") from e
    except httpx.HTTPError as e:
        raise SourceError(f"网络错误: {e}") from e

    status = resp.status_code
    if status >= 400 and _is_rate_limited(resp):
        raise SourceRateLimited(f"触发速率限制 (HTTP {status})", retry_after=_retry_after(resp))
    if status in (401, 403):
        raise SourceError(f"认证失败 (HTTP {status})", {"url": url})
    if status >= 400:
        raise SourceError(f"HTTP {status}: {resp.text[:200]}", {"url": url})

    return resp


def request_json(
    client: httpx.Client,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> Any:
    """发送 GET 请求并解析 JSON."""
    resp = request(client, url, params=params, headers=headers)
    try:
        return resp.json()
    except ValueError as e:
        raise SourceError(f"响应不是合法 JSON: {url}") from e
