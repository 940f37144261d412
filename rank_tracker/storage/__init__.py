"""Data storage and persistence layer"""

from .models import ApiConfig, Keyword, Product, RankHistory, RefreshJob
from .database import Database
from .history import HistoryBatchWriter

__all__ = [
    "ApiConfig",
    "Keyword",
    "Product",
    "RankHistory",
    "RefreshJob",
    "Database",
    "HistoryBatchWriter",
]
