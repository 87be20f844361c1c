"""异常层级.

失败按最小边界收敛:
- SourceError / SourceRateLimited: 单个证据源失败，在 EvidenceSource.search() 内吞掉并记日志
- LLMError: 生成模型调用失败，由 AuthorshipHeuristic 降级为 0 分
- SubmissionInputError: 提交本身不合法，开始分析前直接拒绝
"""


class CodeGuardError(Exception):
    """CodeGuard 所有异常的基类."""

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class SubmissionInputError(CodeGuardError, ValueError):
    """提交内容为空或格式错误."""


class SourceError(CodeGuardError):
    """证据源调用失败（网络、认证、响应格式）."""


class SourceRateLimited(SourceError):
    """证据源触发速率限制."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message, {"retry_after": f"{retry_after:.0f}s"})
        self.retry_after = retry_after


class LLMError(CodeGuardError):
    """生成模型调用失败."""
