"""分析引擎 — 组装证据源、AI 判定器与线程池，驱动整个提交的分析."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pydantic import ValidationError

from codeguard.aggregator import SubmissionAggregator
from codeguard.analyzer import FileAnalyzer
from codeguard.authorship import AuthorshipHeuristic
from codeguard.base import EvidenceSource
from codeguard.config import AnalysisConfig
from codeguard.errors import SubmissionInputError
from codeguard.llm import LLMClient
from codeguard.models import CodeFile, FileResult, SubmissionResult
from codeguard.registry import get_source

logger = logging.getLogger(__name__)


def build_sources(config: AnalysisConfig) -> list[EvidenceSource]:
    """按配置构建启用的证据源，顺序固定为 repo → qa → web."""
    # 确保证据源模块已注册
    import codeguard.sources  # noqa: F401

    timeout = config.per_source_timeout
    sources: list[EvidenceSource] = []
    if config.enable_repo_search:
        sources.append(get_source("repo", token=config.github_token, timeout=timeout))
    if config.enable_qa_search:
        sources.append(get_source(
            "qa",
            key=config.stackexchange_key,
            timeout=timeout,
            max_followups=config.max_answer_followups,
        ))
    if config.enable_web_search:
        sources.append(get_source("web", api_key=config.serpapi_key, timeout=timeout))
    return sources


def build_authorship(config: AnalysisConfig) -> AuthorshipHeuristic:
    """按配置构建 AI 生成判定器. 未指定模型时不做模型复核."""
    llm = None
    if config.llm_model:
        llm = LLMClient(
            model=config.llm_model,
            provider=config.llm_provider,
            api_key=config.llm_api_key,
            api_base=config.llm_api_base,
            timeout=config.llm_timeout,
            max_retries=config.llm_max_retries,
        )
    return AuthorshipHeuristic(config, llm=llm)


class AnalysisEngine:
    """代码溯源分析引擎.

    用法:
        with AnalysisEngine(config) as engine:
            result = engine.analyze([{"filename": "a.py", "content": "..."}])

    文件逐个顺序分析；单个文件内部的检索调用在共享线程池中并发执行。
    证据源、判定器都可以注入，便于测试。
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        sources: list[EvidenceSource] | None = None,
        authorship: AuthorshipHeuristic | None = None,
    ):
        self.config = config or AnalysisConfig()
        self.sources = sources if sources is not None else build_sources(self.config)
        self.authorship = authorship if authorship is not None else build_authorship(self.config)
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_requests,
            thread_name_prefix="codeguard",
        )
        self.analyzer = FileAnalyzer(self.config, self.sources, self.authorship, self.executor)
        self.aggregator = SubmissionAggregator(self.config.high_risk_threshold)

        active = [s.name for s in self.sources if s.configured]
        logger.info("已启用证据源: %s", ", ".join(active) if active else "无")

    def analyze(self, files: list[CodeFile | dict[str, Any]]) -> SubmissionResult:
        """分析一次提交.

        Args:
            files: CodeFile 或 {"filename", "content", "language"?} 字典

        Raises:
            SubmissionInputError: 提交为空或文件格式错误
        """
        code_files = validate_files(files)
        logger.info("开始分析: %d 个文件", len(code_files))

        results: list[FileResult] = []
        for i, f in enumerate(code_files, 1):
            logger.info("[%d/%d] 分析 %s", i, len(code_files), f.filename)
            results.append(self.analyzer.analyze(f))

        return self.aggregator.aggregate(results)

    def analyze_file(self, file: CodeFile | dict[str, Any]) -> FileResult:
        """分析单个文件."""
        return self.analyzer.analyze(validate_files([file])[0])

    def close(self) -> None:
        """关闭线程池与网络连接. 仍在运行的检索调用不再等待."""
        self.executor.shutdown(wait=False, cancel_futures=True)
        for source in self.sources:
            source.close()

    def __enter__(self) -> "AnalysisEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def validate_files(files: list[CodeFile | dict[str, Any]]) -> list[CodeFile]:
    """校验提交内容."""
    if not files:
        raise SubmissionInputError("提交中没有文件")

    code_files: list[CodeFile] = []
    for i, f in enumerate(files):
        if isinstance(f, CodeFile):
            code_files.append(f)
            continue
        try:
            code_files.append(CodeFile.model_validate(f))
        except ValidationError as e:
            raise SubmissionInputError(
                "文件格式错误", {"index": str(i), "error": e.errors()[0]["msg"]}
            ) from e
    return code_files
