"""Domain selector -> API base. "feishu", "lark", or a private deployment URL."""

from __future__ import annotations

FEISHU_HOST = "https://open.feishu.cn"
LARK_HOST = "https://open.larksuite.com"
DEFAULT_DOMAIN = "feishu"


def resolve_host(domain: str | None) -> str:
    if domain == "lark":
        return LARK_HOST
    if domain and domain != DEFAULT_DOMAIN and domain.startswith("http"):
        return domain.rstrip("/")
    return FEISHU_HOST


def resolve_api_base(domain: str | None) -> str:
    return f"{resolve_host(domain)}/open-apis"
