"""配置模型."""

from typing import Literal

from pydantic import BaseModel, Field


class AnalysisConfig(BaseModel):
    """分析流水线配置."""

    # 证据源开关
    enable_repo_search: bool = True
    enable_qa_search: bool = True
    enable_web_search: bool = True
    enable_authorship_check: bool = True

    # 证据源凭据 (为空则该证据源视为未配置，始终返回空结果)
    github_token: str = ""
    stackexchange_key: str = ""
    serpapi_key: str = ""

    # 判定配置
    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    high_risk_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_units_per_file: int = Field(default=10, ge=1, le=100)
    max_answer_followups: int = Field(default=10, ge=0, le=50)

    # 并发与超时
    max_concurrent_requests: int = Field(default=10, ge=1, le=64, description="全局出站并发上限")
    per_source_timeout: float = Field(default=20.0, gt=0, le=300, description="单次证据源调用超时（秒）")
    per_file_time_budget: float = Field(default=120.0, gt=0, le=3600, description="单文件检索总时长（秒）")

    # 评分权重 (启发式调参，非正确性要求)
    plagiarism_max_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    plagiarism_mean_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    pattern_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    model_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    statistical_weight: float = Field(default=0.2, ge=0.0, le=1.0)

    # 生成模型复核 (llm_model 为空则跳过)
    llm_provider: Literal["openai", "anthropic", "custom"] = "openai"
    llm_model: str = ""
    llm_api_key: str = ""
    llm_api_base: str = ""
    llm_timeout: int = Field(default=60, ge=5, le=300, description="生成模型调用超时（秒）")
    llm_max_retries: int = Field(default=2, ge=1, le=10)
