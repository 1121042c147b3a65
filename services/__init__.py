# services/__init__.py
# QLSync - background services: scheduler, debounced triggers, message dispatcher
from __future__ import annotations

from . import messages, scheduling, triggers

__all__ = ["messages", "scheduling", "triggers"]
