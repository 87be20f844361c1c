"""证据源注册表 — 按变体标签分派."""

from codeguard.base import EvidenceSource

_REGISTRY: dict[str, type[EvidenceSource]] = {}


def register(kind: str):
    """注册证据源的装饰器.

    用法:
        @register("repo")
        class GitHubSource(EvidenceSource):
            ...
    """

    def decorator(cls: type[EvidenceSource]):
        _REGISTRY[kind] = cls
        return cls

    return decorator


def get_source(kind: str, **kwargs) -> EvidenceSource:
    """通过变体标签获取证据源实例."""
    if kind not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY.keys()))
        raise ValueError(f"未知证据源: {kind}。可用证据源: {available}")
    return _REGISTRY[kind](**kwargs)


def list_sources() -> dict[str, str]:
    """列出所有已注册证据源. 返回 {kind: name}."""
    return {kind: cls().name for kind, cls in sorted(_REGISTRY.items())}
