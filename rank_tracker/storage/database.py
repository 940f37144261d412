"""Database operations and management"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import create_engine, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import DuplicateEntryError, NotFoundError
from .models import ApiConfig, Base, Keyword, Product, RankHistory, RefreshJob

logger = logging.getLogger(__name__)

SECRET_MASK = "********"


class Database:
    """Database management class"""

    def __init__(self, db_url: str = "sqlite:///data/db/ranks.db", echo: bool = False):
        self.db_url = db_url

        engine_kwargs = {"echo": echo}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in db_url or db_url == "sqlite://":
                # One shared connection, or each checkout would see an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(db_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database initialized: {db_url}")

    @contextmanager
    def session(self):
        """Context manager for database sessions"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, owner_id: str, product_id: str, product_name: str) -> Product:
        """Register a product for an owner.

        Raises:
            ValueError: the external id or the name is blank
            DuplicateEntryError: the owner already tracks this external id
        """
        product_id = product_id.strip()
        product_name = product_name.strip()
        if not product_id:
            raise ValueError("Product ID is required")
        if not product_name:
            raise ValueError("Product name is required")

        try:
            with self.session() as session:
                if self._find_product(session, product_id, owner_id) is not None:
                    raise DuplicateEntryError(
                        "Product already exists", {"product_id": product_id}
                    )

                next_order = (
                    session.query(func.coalesce(func.max(Product.order) + 1, 0))
                    .filter(Product.owner_id == owner_id)
                    .scalar()
                )
                product = Product(
                    owner_id=owner_id,
                    product_id=product_id,
                    product_name=product_name,
                    order=next_order,
                )
                session.add(product)
                session.flush()
                session.refresh(product, attribute_names=["keywords"])
                logger.debug(f"Created product: {product.product_name} (ID: {product.id})")
                return product
        except IntegrityError as e:
            raise DuplicateEntryError("Product already exists", {"product_id": product_id}) from e

    def list_products(
        self, owner_id: Optional[str] = None, limit: Optional[int] = None
    ) -> list[Product]:
        """List products with their keywords, in display order."""
        with self.session() as session:
            query = session.query(Product).options(selectinload(Product.keywords))

            if owner_id:
                query = query.filter(Product.owner_id == owner_id)

            query = query.order_by(Product.order, Product.reg_date.desc())

            if limit:
                query = query.limit(limit)

            products = query.all()
            session.expunge_all()
            return products

    def get_product(self, pk: str) -> Optional[Product]:
        """Get a single product (with keywords) by internal id."""
        with self.session() as session:
            product = (
                session.query(Product)
                .options(selectinload(Product.keywords))
                .filter(Product.id == pk)
                .first()
            )
            if product:
                session.expunge(product)
            return product

    def find_product_by_external_id(
        self, product_id: str, owner_id: Optional[str] = None
    ) -> Optional[Product]:
        """Find a product by its marketplace id, optionally scoped to an owner."""
        with self.session() as session:
            product = self._find_product(session, product_id, owner_id)
            if product:
                session.expunge(product)
            return product

    def _find_product(
        self, session: Session, product_id: str, owner_id: Optional[str]
    ) -> Optional[Product]:
        query = (
            session.query(Product)
            .options(selectinload(Product.keywords))
            .filter(Product.product_id == product_id)
        )
        if owner_id:
            query = query.filter(Product.owner_id == owner_id)
        return query.order_by(Product.reg_date).first()

    def update_product(
        self,
        pk: str,
        product_name: Optional[str] = None,
        product_id: Optional[str] = None,
        order: Optional[int] = None,
    ) -> Product:
        """Rename, re-identify or reorder a product.

        Raises:
            ValueError: a given name or external id is blank
            NotFoundError: no such product
            DuplicateEntryError: the new external id is already tracked by the owner
        """
        if product_name is not None:
            product_name = product_name.strip()
            if not product_name:
                raise ValueError("Product name is required")
        if product_id is not None:
            product_id = product_id.strip()
            if not product_id:
                raise ValueError("Product ID is required")

        try:
            with self.session() as session:
                product = (
                    session.query(Product)
                    .options(selectinload(Product.keywords))
                    .filter(Product.id == pk)
                    .first()
                )
                if product is None:
                    raise NotFoundError("Product not found", {"id": pk})

                if product_name:
                    product.product_name = product_name
                if product_id and product_id != product.product_id:
                    if self._find_product(session, product_id, product.owner_id) is not None:
                        raise DuplicateEntryError(
                            "Product already exists", {"product_id": product_id}
                        )
                    product.product_id = product_id
                if order is not None:
                    product.order = order

                session.flush()
                session.expunge(product)
                return product
        except IntegrityError as e:
            raise DuplicateEntryError("Product already exists", {"product_id": product_id}) from e

    def delete_product(self, pk: str) -> None:
        """Delete a product together with its keywords and rank history."""
        with self.session() as session:
            product = session.query(Product).filter(Product.id == pk).first()
            if product is None:
                raise NotFoundError("Product not found", {"id": pk})
            session.delete(product)
            logger.info(f"Deleted product {pk}")

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def add_keyword(self, product_pk: str, keyword: str) -> Keyword:
        """Track a new keyword for a product.

        Raises:
            ValueError: the keyword is blank
            DuplicateEntryError: the product already tracks this keyword
        """
        keyword = keyword.strip()
        if not keyword:
            raise ValueError("Keyword is required")

        try:
            with self.session() as session:
                existing = (
                    session.query(Keyword)
                    .filter(Keyword.product_pk == product_pk, Keyword.keyword == keyword)
                    .first()
                )
                if existing:
                    raise DuplicateEntryError("Keyword already exists", {"keyword": keyword})

                next_order = (
                    session.query(func.coalesce(func.max(Keyword.order) + 1, 0))
                    .filter(Keyword.product_pk == product_pk)
                    .scalar()
                )
                record = Keyword(product_pk=product_pk, keyword=keyword, order=next_order)
                session.add(record)
                session.flush()
                session.expunge(record)
                return record
        except IntegrityError as e:
            raise DuplicateEntryError("Keyword already exists", {"keyword": keyword}) from e

    def delete_keyword(self, product_pk: str, keyword: str) -> int:
        """Stop tracking a keyword. Rank history keeps its copy of the text."""
        with self.session() as session:
            deleted = (
                session.query(Keyword)
                .filter(Keyword.product_pk == product_pk, Keyword.keyword == keyword)
                .delete()
            )
            return deleted

    def reorder_keywords(self, product_pk: str, keyword_orders: Iterable[dict]) -> None:
        """Apply ``[{"keyword": str, "order": int}, ...]`` to a product's keywords."""
        with self.session() as session:
            for entry in keyword_orders:
                session.query(Keyword).filter(
                    Keyword.product_pk == product_pk,
                    Keyword.keyword == entry["keyword"],
                ).update({Keyword.order: entry["order"]})

    def replace_keywords(self, product_pk: str, keywords: Iterable[str]) -> int:
        """Replace a product's keyword set, keeping the given order."""
        cleaned: list[str] = []
        for kw in keywords:
            kw = kw.strip()
            if kw and kw not in cleaned:
                cleaned.append(kw)

        with self.session() as session:
            session.query(Keyword).filter(Keyword.product_pk == product_pk).delete()
            session.add_all(
                Keyword(product_pk=product_pk, keyword=kw, order=i)
                for i, kw in enumerate(cleaned)
            )
        return len(cleaned)

    # ------------------------------------------------------------------
    # API credentials
    # ------------------------------------------------------------------

    def get_api_config(self, user_id: str) -> Optional[ApiConfig]:
        """Get the credential record of a user"""
        with self.session() as session:
            config = session.query(ApiConfig).filter(ApiConfig.user_id == user_id).first()
            if config:
                session.expunge(config)
            return config

    def get_any_api_config(self) -> Optional[ApiConfig]:
        """Get any credential record with both id and secret filled in"""
        with self.session() as session:
            config = (
                session.query(ApiConfig)
                .filter(ApiConfig.naver_client_id != "", ApiConfig.naver_client_secret != "")
                .order_by(ApiConfig.id)
                .first()
            )
            if config:
                session.expunge(config)
            return config

    def save_api_config(
        self, user_id: str, client_id: str, client_secret: Optional[str] = None
    ) -> ApiConfig:
        """Create or update a user's credentials.

        An empty or masked secret keeps the stored one.
        """
        keep_secret = not client_secret or client_secret == SECRET_MASK

        with self.session() as session:
            config = session.query(ApiConfig).filter(ApiConfig.user_id == user_id).first()
            if config is None:
                config = ApiConfig(user_id=user_id, naver_client_secret="")
                session.add(config)

            config.naver_client_id = client_id
            if not keep_secret:
                config.naver_client_secret = client_secret

            session.flush()
            session.expunge(config)
            return config

    # ------------------------------------------------------------------
    # Rank history
    # ------------------------------------------------------------------

    def bulk_insert_rank_history(self, rows: list[dict]) -> int:
        """Append rank rows in one transaction.

        Args:
            rows: [{"product_pk", "keyword", "rank"}, ...]; ``created_at`` is
                assigned here when missing

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0

        now = datetime.utcnow()
        with self.session() as session:
            session.bulk_insert_mappings(
                RankHistory,
                [
                    {
                        "product_pk": row["product_pk"],
                        "keyword": row["keyword"],
                        "rank": row.get("rank"),
                        "created_at": row.get("created_at") or now,
                    }
                    for row in rows
                ],
            )
        logger.info(f"Inserted {len(rows)} rank_history rows")
        return len(rows)

    def get_rank_history(
        self,
        product_pk: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[RankHistory]:
        """Get rank rows, newest first"""
        with self.session() as session:
            query = session.query(RankHistory)

            if product_pk:
                query = query.filter(RankHistory.product_pk == product_pk)
            if since:
                query = query.filter(RankHistory.created_at >= since)

            query = query.order_by(RankHistory.created_at.desc(), RankHistory.id.desc())

            if limit:
                query = query.limit(limit)

            rows = query.all()
            session.expunge_all()
            return rows

    def count_rank_history(self, product_pk: str) -> int:
        with self.session() as session:
            return (
                session.query(RankHistory).filter(RankHistory.product_pk == product_pk).count()
            )

    def count_rank_history_by_product(self, product_pks: Iterable[str]) -> dict[str, int]:
        """Rank row counts keyed by product, in one grouped query."""
        product_pks = list(product_pks)
        if not product_pks:
            return {}

        with self.session() as session:
            rows = (
                session.query(RankHistory.product_pk, func.count(RankHistory.id))
                .filter(RankHistory.product_pk.in_(product_pks))
                .group_by(RankHistory.product_pk)
                .all()
            )
        counts = {pk: 0 for pk in product_pks}
        counts.update({pk: count for pk, count in rows})
        return counts

    # ------------------------------------------------------------------
    # Refresh jobs
    # ------------------------------------------------------------------

    def record_refresh_job(
        self,
        actor_id: Optional[str],
        status: str,
        started_at: datetime,
        total_tasks: int = 0,
        success_count: int = 0,
        not_found_count: int = 0,
        failed_count: int = 0,
        duration: float = 0,
        error: Optional[str] = None,
    ):
        """Record a refresh run completion"""
        with self.session() as session:
            job = RefreshJob(
                actor_id=actor_id,
                status=status,
                started_at=started_at,
                total_tasks=total_tasks,
                success_count=success_count,
                not_found_count=not_found_count,
                failed_count=failed_count,
                duration_seconds=duration,
                error=error,
                completed_at=datetime.utcnow(),
            )
            session.add(job)

    def get_refresh_jobs(self, limit: int = 20) -> list[RefreshJob]:
        """Get the latest refresh runs"""
        with self.session() as session:
            jobs = (
                session.query(RefreshJob)
                .order_by(RefreshJob.started_at.desc(), RefreshJob.id.desc())
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return jobs
