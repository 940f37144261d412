"""Database models for the rank tracker."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


# ============================================================================
# Pydantic Models (for data transfer)
# ============================================================================


class SearchItem(BaseModel):
    """One item of a shopping search result page."""

    product_id: str = ""
    mall_product_id: str = ""
    link: str = ""
    title: str = ""
    mall_name: str = ""


class RefreshTask(BaseModel):
    """A (product, keyword) pair to look up during one refresh run."""

    product_pk: str  # internal products.id
    product_id: str  # external marketplace id
    keyword: str


class RefreshOutcome(BaseModel):
    """Result of one refresh task.

    ``ok`` is False when the upstream call itself failed, as opposed to
    completing without finding the product.
    """

    task: RefreshTask
    rank: Optional[int] = None
    ok: bool = True

    @property
    def found(self) -> bool:
        return self.ok and self.rank is not None


class RefreshSummary(BaseModel):
    """Aggregate statistics returned by a refresh run."""

    success: bool = True
    total_tasks: int = 0
    success_count: int = 0
    not_found_count: int = 0
    failed_count: int = 0
    duration_ms: int = 0
    stats: dict = Field(default_factory=dict)

    def to_response(self) -> dict:
        return {
            "success": self.success,
            "totalTasks": self.total_tasks,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "notFoundCount": self.not_found_count,
            "durationMs": self.duration_ms,
            "stats": self.stats,
        }


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class Product(Base):
    """Tracked marketplace listing, owned by one user."""

    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("owner_id", "product_id", name="uq_owner_product"),)

    id = Column(String(32), primary_key=True, default=_new_id)
    owner_id = Column(String, index=True, nullable=False)
    product_id = Column(String, index=True, nullable=False)  # external marketplace id
    product_name = Column(String, nullable=False)
    order = Column(Integer, default=0, nullable=False)
    reg_date = Column(DateTime, default=datetime.utcnow)

    # Relationships
    keywords = relationship(
        "Keyword",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by=lambda: [Keyword.order, Keyword.id],
    )
    rank_history = relationship(
        "RankHistory", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product(id={self.id}, product_id='{self.product_id}', name='{self.product_name}')>"


class Keyword(Base):
    """Search term tracked for a product."""

    __tablename__ = "keywords"
    __table_args__ = (UniqueConstraint("product_pk", "keyword", name="uq_product_keyword"),)

    id = Column(Integer, primary_key=True)
    product_pk = Column(
        String(32), ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
    )
    keyword = Column(String, nullable=False)
    order = Column(Integer, default=0, nullable=False)

    # Relationships
    product = relationship("Product", back_populates="keywords")

    def __repr__(self):
        return f"<Keyword(id={self.id}, keyword='{self.keyword}', product_pk={self.product_pk})>"


class RankHistory(Base):
    """Append-only rank observation.

    The keyword text is copied so history survives keyword deletion.
    """

    __tablename__ = "rank_history"

    id = Column(Integer, primary_key=True)
    product_pk = Column(
        String(32), ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
    )
    keyword = Column(String, index=True, nullable=False)
    rank = Column(Integer)  # NULL = not found within search depth
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    product = relationship("Product", back_populates="rank_history")

    def __repr__(self):
        return f"<RankHistory(id={self.id}, keyword='{self.keyword}', rank={self.rank})>"


class ApiConfig(Base):
    """Naver API credentials stored per user."""

    __tablename__ = "api_configs"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, unique=True, nullable=False)
    naver_client_id = Column(String, default="", nullable=False)
    naver_client_secret = Column(String, default="", nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_usable(self) -> bool:
        return bool(self.naver_client_id) and bool(self.naver_client_secret)

    def __repr__(self):
        return f"<ApiConfig(id={self.id}, user_id='{self.user_id}')>"


class RefreshJob(Base):
    """Track refresh runs for monitoring and debugging."""

    __tablename__ = "refresh_jobs"

    id = Column(Integer, primary_key=True)
    actor_id = Column(String, index=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    status = Column(String)  # completed, failed

    total_tasks = Column(Integer, default=0)
    success_count = Column(Integer, default=0)
    not_found_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    duration_seconds = Column(Float)
    error = Column(String)

    def __repr__(self):
        return f"<RefreshJob(id={self.id}, actor='{self.actor_id}', status='{self.status}')>"
