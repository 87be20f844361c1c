"""CodeGuard - 代码抄袭与 AI 生成溯源工具

把提交的代码拆成可比对单元，到代码托管、问答社区、通用网页
三类证据源检索相似片段，结合 AI 生成启发式给出风险评估。
"""

__version__ = "0.1.0"

from codeguard.base import EvidenceSource
from codeguard.config import AnalysisConfig
from codeguard.engine import AnalysisEngine
from codeguard.models import (
    CodeFile,
    CodeUnit,
    FileResult,
    Match,
    SubmissionResult,
)

__all__ = [
    "AnalysisConfig",
    "AnalysisEngine",
    "CodeFile",
    "CodeUnit",
    "EvidenceSource",
    "FileResult",
    "Match",
    "SubmissionResult",
    "__version__",
]
