"""Rank history summaries"""

from .history_view import KeywordRankSummary, RankHistoryView, RankPoint, daily_series

__all__ = ["KeywordRankSummary", "RankHistoryView", "RankPoint", "daily_series"]
