"""Request guards for the painter HTTP surface."""
from __future__ import annotations

from painter.middlewares.body_limit import BodyLimitMiddleware

__all__ = ["BodyLimitMiddleware"]
