"""生成模型客户端 — 用于 AI 生成判定的第二意见.

支持 openai / anthropic SDK 以及 OpenAI 兼容的自定义 HTTP 接口，
调用失败时按指数退避重试。
"""

import logging
import time
from typing import Any

import httpx

from codeguard.errors import LLMError

logger = logging.getLogger(__name__)

_MAX_TOKENS = 400


class LLMClient:
    """生成模型调用封装: generate(prompt) -> 响应文本."""

    def __init__(
        self,
        model: str = "",
        provider: str = "openai",
        api_key: str = "",
        api_base: str = "",
        timeout: int = 60,
        max_retries: int = 2,
    ):
        self.model = model
        self.provider = provider
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self.max_retries = max_retries

    @property
    def configured(self) -> bool:
        """未指定模型或自定义接口缺少地址时视为未配置."""
        if not self.model:
            return False
        if self.provider == "custom" and not self.api_base:
            return False
        return True

    def generate(self, prompt: str) -> str:
        """调用模型获取响应，失败时抛出 LLMError."""
        if not self.configured:
            raise LLMError("生成模型未配置")

        for attempt in range(self.max_retries):
            try:
                text = self._generate_once(prompt)
            except ImportError as e:
                raise LLMError(str(e)) from e
            except ValueError as e:
                raise LLMError(f"参数错误 (model={self.model}): {e}") from e
            except Exception as e:
                err_str = str(e).lower()
                # 认证/权限错误 — 不重试
                if any(kw in err_str for kw in ("401", "403", "unauthorized", "forbidden",
                                                 "invalid api key", "authentication")):
                    raise LLMError(f"API 认证失败 (model={self.model}): {e}") from e
                logger.warning(
                    "模型调用失败 (model=%s, attempt=%d/%d): %s",
                    self.model, attempt + 1, self.max_retries, e,
                )
                if attempt < self.max_retries - 1:
                    # 速率限制 — 加长退避
                    _backoff_sleep(attempt + 1 if "429" in err_str or "rate" in err_str else attempt)
                    continue
                raise LLMError(f"模型调用失败 (model={self.model}): {e}") from e

            if text and text.strip():
                return text
            logger.warning("模型返回空响应 (model=%s, attempt=%d)", self.model, attempt + 1)
            if attempt < self.max_retries - 1:
                _backoff_sleep(attempt)

        raise LLMError(f"模型多次返回空响应 (model={self.model})")

    def _generate_once(self, prompt: str) -> str:
        """单次调用模型 API."""
        if self.provider == "openai":
            try:
                from openai import OpenAI
            except ImportError:
                raise ImportError("需要 openai 库。请运行: pip install knowlyr-codeguard[llm]")

            client_kwargs: dict[str, Any] = {"timeout": float(self.timeout)}
            if self.api_key:
                client_kwargs["api_key"] = self.api_key
            if self.api_base:
                client_kwargs["base_url"] = self.api_base

            client = OpenAI(**client_kwargs)
            response = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=_MAX_TOKENS,
                temperature=0.0,
            )
            return response.choices[0].message.content or ""

        elif self.provider == "anthropic":
            try:
                from anthropic import Anthropic
            except ImportError:
                raise ImportError("需要 anthropic 库。请运行: pip install knowlyr-codeguard[llm]")

            client_kwargs = {"timeout": float(self.timeout)}
            if self.api_key:
                client_kwargs["api_key"] = self.api_key
            if self.api_base:
                client_kwargs["base_url"] = self.api_base

            client = Anthropic(**client_kwargs)
            response = client.messages.create(
                model=self.model,
                max_tokens=_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text if response.content else ""

        elif self.provider == "custom":
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            resp = httpx.post(
                f"{self.api_base.rstrip('/')}/v1/chat/completions",
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "max_tokens": _MAX_TOKENS,
                    "temperature": 0.0,
                },
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"]

        else:
            raise ValueError(f"不支持的 provider: {self.provider}")


def _backoff_sleep(attempt: int) -> None:
    """指数退避等待."""
    delay = min(2 ** attempt, 30)
    logger.info("等待 %ds 后重试...", delay)
    time.sleep(delay)
