"""FastAPI application for the rank tracker."""

from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..errors import (
    DuplicateEntryError,
    HistoryWriteError,
    NotFoundError,
    PermissionDeniedError,
    RankTrackerError,
    RefreshPreconditionError,
)
from ..orchestrator.coordinator import RefreshCoordinator
from ..ranking.history_view import RankHistoryView
from ..storage.database import SECRET_MASK, Database
from ..storage.models import Product
from ..utils.config import Config, get_config

ERROR_STATUS = {
    RefreshPreconditionError: 400,
    NotFoundError: 404,
    PermissionDeniedError: 403,
    DuplicateEntryError: 409,
    HistoryWriteError: 500,
}


# ============================================================================
# Request bodies
# ============================================================================


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProductCreate(_Body):
    product_id: str = Field(alias="productId")
    product_name: str = Field(alias="productName")


class ProductUpdate(_Body):
    product_name: Optional[str] = Field(default=None, alias="productName")
    product_id: Optional[str] = Field(default=None, alias="productId")
    order: Optional[int] = None


class KeywordCreate(_Body):
    keyword: str


class KeywordOrder(_Body):
    keyword: str
    order: int


class KeywordReorder(_Body):
    keyword_orders: List[KeywordOrder] = Field(alias="keywordOrders")


class KeywordReplace(_Body):
    product_id: str = Field(alias="productId")
    keywords: List[str] = Field(min_length=1)


class SettingsUpdate(_Body):
    naver_client_id: str = Field(alias="naverClientId")
    naver_client_secret: Optional[str] = Field(default=None, alias="naverClientSecret")


# ============================================================================
# Helpers
# ============================================================================


def get_actor(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Opaque identity of the caller, None for anonymous reads."""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def require_actor(actor: Optional[str] = Depends(get_actor)) -> str:
    if actor is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return actor


def serialize_product(product: Product, rank_count: Optional[int] = None) -> dict:
    data = {
        "id": product.id,
        "productId": product.product_id,
        "productName": product.product_name,
        "order": product.order,
        "regDate": product.reg_date.isoformat() if product.reg_date else None,
        "keywords": [
            {"id": kw.id, "keyword": kw.keyword, "order": kw.order} for kw in product.keywords
        ],
    }
    if rank_count is not None:
        data["rankCount"] = rank_count
    return data


def owned_product(db: Database, pk: str, actor: str) -> Product:
    """Load a product and check that ``actor`` owns it."""
    product = db.get_product(pk)
    if product is None:
        raise NotFoundError("Product not found", {"id": pk})
    if product.owner_id != actor:
        raise PermissionDeniedError("Forbidden", {"id": pk})
    return product


# ============================================================================
# Application
# ============================================================================


def create_app(
    config: Optional[Config] = None,
    db: Optional[Database] = None,
    coordinator: Optional[RefreshCoordinator] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        config: Merged configuration (loaded from env/YAML when omitted)
        db: Database (built from ``config.database`` when omitted)
        coordinator: Refresh coordinator (built from ``db`` and ``config`` when omitted)
    """
    if config is None:
        config = get_config()
    if db is None:
        db = Database(config.database.url, echo=config.database.echo)
    if coordinator is None:
        coordinator = RefreshCoordinator(db, config)

    history_view = RankHistoryView.from_config(db, config.history)

    app = FastAPI(
        title="Shopping Rank Tracker API",
        description="Keyword rank tracking for marketplace listings",
        version="1.0.0",
    )
    app.state.config = config
    app.state.db = db
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RankTrackerError)
    async def rank_tracker_error_handler(request: Request, exc: RankTrackerError):
        status = ERROR_STATUS.get(type(exc), 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content={"detail": exc.message})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Shopping Rank Tracker API",
            "version": "1.0.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
        }

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    @app.get("/products")
    async def list_products(
        user_id: Optional[str] = Query(None, alias="userId", description="Owner filter"),
    ):
        """List products with keywords. Readable without signing in."""
        products = db.list_products(owner_id=user_id, limit=None if user_id else 100)
        counts = db.count_rank_history_by_product(p.id for p in products)
        return [serialize_product(p, counts[p.id]) for p in products]

    @app.post("/products")
    async def create_product(body: ProductCreate, actor: str = Depends(require_actor)):
        product = db.create_product(actor, body.product_id, body.product_name)
        return serialize_product(product)

    @app.put("/products/{pk}")
    async def update_product(pk: str, body: ProductUpdate, actor: str = Depends(require_actor)):
        """Rename, change the marketplace id of, or reorder a product."""
        owned_product(db, pk, actor)
        product = db.update_product(
            pk, product_name=body.product_name, product_id=body.product_id, order=body.order
        )
        return serialize_product(product)

    @app.delete("/products/{pk}")
    async def delete_product(pk: str, actor: str = Depends(require_actor)):
        """Delete a product with its keywords and rank history."""
        owned_product(db, pk, actor)
        db.delete_product(pk)
        return {"success": True}

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    @app.post("/products/{pk}/keywords")
    async def add_keyword(pk: str, body: KeywordCreate, actor: str = Depends(require_actor)):
        owned_product(db, pk, actor)
        keyword = db.add_keyword(pk, body.keyword)
        return {"id": keyword.id, "productId": pk, "keyword": keyword.keyword, "order": keyword.order}

    @app.delete("/products/{pk}/keywords")
    async def delete_keyword(
        pk: str,
        keyword: str = Query(..., min_length=1),
        actor: str = Depends(require_actor),
    ):
        owned_product(db, pk, actor)
        if db.delete_keyword(pk, keyword) == 0:
            raise NotFoundError("Keyword not found", {"keyword": keyword})
        return {"success": True}

    @app.put("/products/{pk}/keywords")
    async def reorder_keywords(
        pk: str, body: KeywordReorder, actor: str = Depends(require_actor)
    ):
        owned_product(db, pk, actor)
        db.reorder_keywords(pk, [entry.model_dump() for entry in body.keyword_orders])
        return {"success": True}

    @app.post("/keywords")
    async def replace_keywords(body: KeywordReplace, actor: str = Depends(require_actor)):
        """Replace the whole keyword set of a product."""
        owned_product(db, body.product_id, actor)
        count = db.replace_keywords(body.product_id, body.keywords)
        return {"success": True, "count": count}

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @app.get("/settings")
    async def get_settings(actor: str = Depends(require_actor)):
        api_config = db.get_api_config(actor)
        has_secret = bool(api_config and api_config.naver_client_secret)
        return {
            "naverClientId": api_config.naver_client_id if api_config else "",
            "naverClientSecret": SECRET_MASK if has_secret else "",
            "hasSecret": has_secret,
        }

    @app.post("/settings")
    async def save_settings(body: SettingsUpdate, actor: str = Depends(require_actor)):
        if not body.naver_client_id.strip():
            raise HTTPException(status_code=400, detail="Client ID is required")
        db.save_api_config(actor, body.naver_client_id.strip(), body.naver_client_secret)
        return {"success": True}

    # ------------------------------------------------------------------
    # Ranks
    # ------------------------------------------------------------------

    @app.get("/ranks")
    async def get_ranks(
        product_id: Optional[str] = Query(None, alias="productId"),
        user_id: Optional[str] = Query(None, alias="userId"),
    ):
        """Keyword rank summaries for one product or all products in scope."""
        return history_view.ranks_for(product_external_id=product_id, owner_id=user_id)

    @app.post("/ranks/refresh")
    async def refresh_ranks(actor: Optional[str] = Depends(get_actor)):
        """Look up the current rank of every (product, keyword) pair in scope."""
        try:
            summary = await coordinator.refresh(actor)
            return summary.to_response()
        except RankTrackerError:
            raise
        except Exception as e:
            logger.error(f"Error refreshing ranks: {e}")
            raise HTTPException(status_code=500, detail="Rank refresh failed")

    return app


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "rank_tracker.api.main:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=False,
    )
