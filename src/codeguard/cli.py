"""CodeGuard CLI — 命令行界面."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from codeguard import __version__
from codeguard.config import AnalysisConfig
from codeguard.engine import AnalysisEngine
from codeguard.errors import CodeGuardError, SourceError
from codeguard.extractor import extract_units
from codeguard.languages import detect_language, is_code_file
from codeguard.models import CodeFile, SubmissionResult
from codeguard.report import generate_report, risk_label
from codeguard.similarity import risk_tier, score

# 目录扫描时跳过的目录
_SKIP_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    "dist", "build", ".idea", ".vscode",
})


def _setup_logging(verbose: bool) -> None:
    """配置日志级别."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
@click.version_option(version=__version__, prog_name="knowlyr-codeguard")
@click.option("-v", "--verbose", is_flag=True, default=False, help="显示详细日志")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """CodeGuard — 代码抄袭与 AI 生成溯源工具

    到代码托管、问答社区、通用网页检索相似代码，评估抄袭与 AI 生成风险。
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


_ANALYSIS_OPTIONS = [
    click.option("-o", "--output", type=click.Path(), help="报告输出路径"),
    click.option(
        "-f", "--format", "output_format",
        type=click.Choice(["markdown", "json"]),
        default="markdown",
        help="报告格式",
    ),
    click.option("--threshold", type=float, default=0.3, help="相似度匹配阈值"),
    click.option("--max-units", type=int, default=10, help="每个文件最多比对的代码单元数"),
    click.option("--no-repo", is_flag=True, default=False, help="不检索代码托管平台"),
    click.option("--no-qa", is_flag=True, default=False, help="不检索问答社区"),
    click.option("--no-web", is_flag=True, default=False, help="不检索通用网页"),
    click.option("--no-ai", is_flag=True, default=False, help="跳过 AI 生成判定"),
    click.option("--github-token", envvar="GITHUB_TOKEN", default="", help="GitHub token"),
    click.option("--stackexchange-key", envvar="STACKEXCHANGE_KEY", default="", help="Stack Exchange key"),
    click.option("--serpapi-key", envvar="SERPAPI_KEY", default="", help="SerpAPI key"),
    click.option(
        "--llm-provider",
        type=click.Choice(["openai", "anthropic", "custom"]),
        default="openai",
        help="AI 判定复核模型的 API 提供商",
    ),
    click.option("--llm-model", default="", help="AI 判定复核模型 (为空则不调用模型)"),
    click.option("--llm-api-key", envvar="CODEGUARD_LLM_API_KEY", default="", help="模型 API Key"),
    click.option("--llm-api-base", default="", help="自定义模型 API 地址"),
    click.option("--workers", type=int, default=10, help="并发检索数"),
    click.option("--source-timeout", type=float, default=20.0, help="单次检索超时（秒）"),
    click.option("--file-budget", type=float, default=120.0, help="单文件检索总时长（秒）"),
]


def _analysis_options(func):
    """analyze / repo 共用的分析选项."""
    for option in reversed(_ANALYSIS_OPTIONS):
        func = option(func)
    return func


def _build_config(opts: dict) -> AnalysisConfig:
    try:
        return AnalysisConfig(
            similarity_threshold=opts["threshold"],
            max_units_per_file=opts["max_units"],
            enable_repo_search=not opts["no_repo"],
            enable_qa_search=not opts["no_qa"],
            enable_web_search=not opts["no_web"],
            enable_authorship_check=not opts["no_ai"],
            github_token=opts["github_token"],
            stackexchange_key=opts["stackexchange_key"],
            serpapi_key=opts["serpapi_key"],
            llm_provider=opts["llm_provider"],
            llm_model=opts["llm_model"],
            llm_api_key=opts["llm_api_key"],
            llm_api_base=opts["llm_api_base"],
            max_concurrent_requests=opts["workers"],
            per_source_timeout=opts["source_timeout"],
            per_file_time_budget=opts["file_budget"],
        )
    except ValueError as e:
        raise click.BadParameter(str(e))


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@_analysis_options
def analyze(paths: tuple[str, ...], **opts):
    """分析本地代码 — 检索相似来源并评估 AI 生成可能性

    PATHS: 源文件或目录 (目录会递归扫描源文件)

    \b
    示例:
      knowlyr-codeguard analyze homework.py
      knowlyr-codeguard analyze src/ -o report.md
      knowlyr-codeguard analyze main.js --no-web -f json -o result.json
    """
    files = _load_files(paths)
    if not files:
        click.echo("错误: 没有找到可分析的源文件", err=True)
        sys.exit(1)

    _run_analysis(files, _build_config(opts), opts["output"], opts["output_format"])


@main.command()
@click.argument("url", type=str)
@click.option("--max-files", type=int, default=50, help="最多拉取的文件数")
@_analysis_options
def repo(url: str, max_files: int, **opts):
    """分析 GitHub 仓库 — 拉取仓库源文件后逐个分析

    URL: 仓库地址 (如 https://github.com/owner/repo)
    """
    from codeguard.sources.github import GitHubClient

    config = _build_config(opts)
    client = GitHubClient(token=config.github_token, timeout=config.per_source_timeout)
    click.echo(f"正在拉取 {url} ...")
    try:
        files = client.extract_repository(url, max_files=max_files)
    except (SourceError, ValueError) as e:
        click.echo(f"错误: {e}", err=True)
        sys.exit(1)
    finally:
        client.close()

    if not files:
        click.echo("错误: 仓库中没有找到可分析的源文件", err=True)
        sys.exit(1)

    _run_analysis(files, config, opts["output"], opts["output_format"])


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--max-units", type=int, default=10, help="最多抽取的代码单元数")
@click.option("--language", type=str, default=None, help="指定语言 (默认按扩展名推断)")
def extract(file: str, max_units: int, language: str | None):
    """查看代码单元抽取结果

    FILE: 源文件
    """
    path = Path(file)
    lang = language or detect_language(path.name)
    units = extract_units(
        path.read_text(encoding="utf-8", errors="replace"),
        language=lang,
        filename=path.name,
        max_units=max_units,
    )

    if not units:
        click.echo("未抽取到代码单元")
        return

    console = Console()
    table = Table(title=f"{path.name} ({lang}) 代码单元")
    table.add_column("#", justify="right", style="dim")
    table.add_column("类型", style="cyan")
    table.add_column("起始行", justify="right")
    table.add_column("长度", justify="right")
    table.add_column("首行", max_width=60)

    for u in units:
        first_line = u.text.strip().split("\n", 1)[0]
        table.add_row(str(u.index), u.kind, str(u.start_line), str(len(u.text)), first_line)

    console.print(table)


@main.command()
@click.argument("file_a", type=click.Path(exists=True, dir_okay=False))
@click.argument("file_b", type=click.Path(exists=True, dir_okay=False))
def similarity(file_a: str, file_b: str):
    """比较两个文件的文本相似度

    FILE_A / FILE_B: 待比较的文件
    """
    text_a = Path(file_a).read_text(encoding="utf-8", errors="replace")
    text_b = Path(file_b).read_text(encoding="utf-8", errors="replace")
    s = score(text_a, text_b)

    click.echo(f"相似度: {s:.4f}")
    click.echo(f"风险等级: {risk_tier(s)}")


@main.command()
def sources():
    """列出所有可用的证据源"""
    # 确保证据源已注册
    import codeguard.sources  # noqa: F401
    from codeguard.registry import list_sources

    requirements = {
        "repo": "需要 GITHUB_TOKEN",
        "qa": "可匿名访问，STACKEXCHANGE_KEY 可提高配额",
        "web": "需要 SERPAPI_KEY",
    }

    click.echo("\n可用证据源:")
    click.echo("=" * 40)
    for kind, name in list_sources().items():
        click.echo(f"\n  {kind}: {name}")
        if kind in requirements:
            click.echo(f"      {requirements[kind]}")
    click.echo("\n" + "=" * 40)


def _load_files(paths: tuple[str, ...]) -> list[CodeFile]:
    """读取文件或递归扫描目录."""
    files: list[CodeFile] = []
    for p in paths:
        path = Path(p)
        if path.is_file():
            candidates = [(path, path.name)]
        else:
            candidates = [
                (f, f.relative_to(path).as_posix())
                for f in sorted(path.rglob("*"))
                if f.is_file()
                and is_code_file(f.name)
                and not any(part in _SKIP_DIRS for part in f.relative_to(path).parts)
            ]
        for f, name in candidates:
            content = f.read_text(encoding="utf-8", errors="replace")
            if content.strip():
                files.append(CodeFile(filename=name, content=content))
    return files


def _run_analysis(
    files: list[CodeFile],
    config: AnalysisConfig,
    output: str | None,
    output_format: str,
) -> None:
    click.echo(f"正在分析 {len(files)} 个文件...")
    try:
        with AnalysisEngine(config) as engine:
            result = engine.analyze(files)
    except CodeGuardError as e:
        click.echo(f"错误: {e}", err=True)
        sys.exit(1)

    if output:
        Path(output).write_text(generate_report(result, format=output_format), encoding="utf-8")
        _print_summary(result)
        click.echo(f"\n报告已保存: {output}")
    elif output_format == "json":
        click.echo(generate_report(result, format="json"))
    else:
        _print_summary(result)


def _print_summary(result: SubmissionResult) -> None:
    """打印分析结果表格."""
    summary = result.summary
    console = Console()
    table = Table(title="代码溯源分析结果")

    table.add_column("文件", style="cyan")
    table.add_column("语言")
    table.add_column("抄袭风险", justify="right")
    table.add_column("AI 生成", justify="right")
    table.add_column("匹配数", justify="right")
    table.add_column("状态")

    for f in result.files:
        status = f"失败: {f.error}" if f.error else ("⚠ " + "; ".join(f.warnings) if f.warnings else "完成")
        table.add_row(
            f.filename,
            f.language,
            f"{f.plagiarism_score:.1%}",
            f"{f.ai_generated_score:.1%}",
            str(len(f.matches)),
            status,
        )

    console.print(table)
    click.echo(
        f"\n抄袭风险: {summary.plagiarism_score:.1%} ({risk_label(summary.plagiarism_score)})"
        f"  AI 生成: {summary.ai_generated_score:.1%}"
        f"  匹配: {summary.total_matches}"
    )
    if summary.high_risk_files:
        click.echo("高风险文件:")
        for f in summary.high_risk_files:
            click.echo(f"  - {f.filename} ({f.score:.1%})")


if __name__ == "__main__":
    main()
