"""Upstream search agents"""

from .base_agent import BaseAgent
from .naver_shopping import Credentials, NaverShoppingAgent, RankLookupResult

__all__ = ["BaseAgent", "Credentials", "NaverShoppingAgent", "RankLookupResult"]
