"""Refresh orchestration"""

from .coordinator import RefreshCoordinator
from .runner import run_bounded

__all__ = ["RefreshCoordinator", "run_bounded"]
