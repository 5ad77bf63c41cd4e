"""Live card delivery for Feishu/Lark: token and client caches, streaming card sessions."""

__version__ = "0.1.0"
