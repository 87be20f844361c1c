"""代码托管检索 — GitHub REST API.

逐单元检索只调用 /search/code，并用 text-match 片段作为候选文本，
不额外拉取文件内容；整仓库拉取 (extract_repository) 是独立的导入路径。
"""

import base64
import logging
import re
from typing import Any

import httpx

from codeguard.base import EvidenceSource, compact_query
from codeguard.errors import SourceError
from codeguard.languages import detect_language, is_code_file
from codeguard.models import Candidate, CodeFile, SourceKind
from codeguard.registry import register
from codeguard.sources.http import LazyClient, request, request_json

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
TEXT_MATCH_MEDIA = "application/vnd.github.text-match+json"
RAW_MEDIA = "application/vnd.github.raw"

# GitHub 检索词上限 256 字符，留出 language: 限定符的空间
_MAX_QUERY_LENGTH = 200
_REPO_URL = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+)")


def parse_repo_url(url: str) -> tuple[str, str]:
    """解析仓库地址，返回 (owner, repo)."""
    m = _REPO_URL.search(url)
    if not m:
        raise ValueError(f"无法识别的 GitHub 仓库地址: {url}")
    owner, repo = m.group(1), m.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return owner, repo


class GitHubClient:
    """GitHub REST API 客户端."""

    def __init__(
        self,
        token: str = "",
        timeout: float = 20.0,
        api_base: str = GITHUB_API,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token = token
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = LazyClient(api_base, headers=headers, timeout=timeout, transport=transport)

    def search_code(
        self, query: str, language: str | None = None, per_page: int = 10
    ) -> list[dict[str, Any]]:
        """代码检索. 返回 name / path / repository / url / language / score / fragments."""
        q = f"{query} language:{language}" if language else query
        data = request_json(
            self._http.get(),
            "/search/code",
            params={"q": q, "per_page": per_page},
            headers={"Accept": TEXT_MATCH_MEDIA},
        )

        results = []
        for item in data.get("items", []):
            path = item.get("path", "")
            results.append({
                "name": item.get("name", ""),
                "path": path,
                "repository": (item.get("repository") or {}).get("full_name", ""),
                "url": item.get("html_url", ""),
                "language": detect_language(path),
                "score": item.get("score"),
                "fragments": [
                    tm.get("fragment", "") for tm in item.get("text_matches") or []
                    if tm.get("fragment")
                ],
            })
        return results

    def search_repositories(
        self, query: str, language: str | None = None, per_page: int = 10
    ) -> list[dict[str, Any]]:
        """仓库检索，按 star 数降序."""
        q = f"{query} language:{language}" if language else query
        data = request_json(
            self._http.get(),
            "/search/repositories",
            params={"q": q, "sort": "stars", "order": "desc", "per_page": per_page},
        )
        return [
            {
                "name": repo.get("full_name", ""),
                "description": repo.get("description") or "",
                "url": repo.get("html_url", ""),
                "stars": repo.get("stargazers_count", 0),
                "language": repo.get("language") or "",
                "size": repo.get("size", 0),
            }
            for repo in data.get("items", [])
        ]

    def get_contents(self, owner: str, repo: str, path: str = "") -> list[dict[str, Any]]:
        """递归列出目录下所有文件条目."""
        data = request_json(self._http.get(), f"/repos/{owner}/{repo}/contents/{path}")
        entries = data if isinstance(data, list) else [data]

        files: list[dict[str, Any]] = []
        for entry in entries:
            if entry.get("type") == "file":
                files.append(entry)
            elif entry.get("type") == "dir":
                files.extend(self.get_contents(owner, repo, entry.get("path", "")))
        return files

    def get_file_content(self, owner: str, repo: str, path: str) -> str | None:
        """读取单个文件内容."""
        resp = request(
            self._http.get(),
            f"/repos/{owner}/{repo}/contents/{path}",
            headers={"Accept": RAW_MEDIA},
        )
        if resp.headers.get("content-type", "").startswith("application/json"):
            # 未按 raw 返回时内容为 base64 编码
            content = resp.json().get("content")
            if not content:
                return None
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return resp.text

    def extract_repository(self, url: str, max_files: int = 200) -> list[CodeFile]:
        """拉取整个仓库的源文件.

        Args:
            url: 仓库地址，如 https://github.com/owner/repo
            max_files: 最多拉取的文件数
        """
        owner, repo = parse_repo_url(url)
        logger.info("拉取仓库: %s/%s", owner, repo)

        entries = [e for e in self.get_contents(owner, repo) if is_code_file(e.get("name", ""))]
        if len(entries) > max_files:
            logger.warning("仓库文件过多 (%d)，只拉取前 %d 个", len(entries), max_files)
            entries = entries[:max_files]

        files: list[CodeFile] = []
        for entry in entries:
            path = entry.get("path", "")
            try:
                content = self.get_file_content(owner, repo, path)
            except SourceError as e:
                logger.warning("读取文件失败，已跳过: %s (%s)", path, e)
                continue
            if content:
                files.append(CodeFile(filename=path, content=content))

        logger.info("已拉取 %d 个源文件: %s/%s", len(files), owner, repo)
        return files

    def close(self) -> None:
        self._http.close()


@register("repo")
class GitHubSource(EvidenceSource):
    """GitHub 代码检索证据源. 需要 token（代码检索接口要求认证）."""

    def __init__(
        self,
        token: str = "",
        timeout: float = 20.0,
        min_interval: float = 0.0,
        client: GitHubClient | None = None,
    ):
        super().__init__(timeout=timeout, min_interval=min_interval)
        self.token = token
        self.client = client or GitHubClient(token=token, timeout=timeout)

    @property
    def kind(self) -> SourceKind:
        return "repo"

    @property
    def name(self) -> str:
        return "GitHub"

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _search(self, query: str, language: str | None) -> list[Candidate]:
        lang = language if language and language != "unknown" else None
        items = self.client.search_code(
            compact_query(query, _MAX_QUERY_LENGTH, strip_punctuation=True), lang
        )
        return [
            Candidate(
                title=f"{item['repository']}/{item['path']}" if item["repository"] else item["path"],
                link=item["url"],
                source_kind="repo",
                snippet_text="\n".join(item["fragments"]),
                native_score=float(item["score"]) if item["score"] is not None else None,
            )
            for item in items
        ]

    def close(self) -> None:
        self.client.close()
