"""证据源注册.

导入所有证据源模块以触发 @register 装饰器注册。
"""

from codeguard.sources import github, stackoverflow, web  # noqa: F401

__all__ = ["github", "stackoverflow", "web"]
