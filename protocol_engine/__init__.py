# protocol_engine/__init__.py
from __future__ import annotations

__all__: list[str] = ["actions", "engine", "expressions", "loader"]
__version__: str = "0.4.2"
