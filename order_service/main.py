"""
Order Service — FastAPI エントリーポイント

認証はこのサービスの外 (BFF / API ゲートウェイ) で行われ、
認証済みユーザーは X-User-Id / X-User-Role ヘッダーで渡される。
このサービスはその値を信頼し、所有者チェックと管理者チェックのみ行う。

  GET   /orders               (admin) 注文一覧
  GET   /orders/my            自分の注文一覧
  GET   /orders/{id}          注文詳細 (admin 以外は自分の注文のみ)
  POST  /orders               注文作成
  PATCH /orders/{id}/status   (admin) ステータス変更
  PUT   /orders/{id}/cancel   キャンセル
  GET   /orders/{id}/events   (admin) 注文イベントログ

エラーはすべて {"success": false, "code", "message", ...} の形で返す。
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from http import HTTPStatus
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import db
from .aggregate import OrderStatus
from .config import Settings, configure_logging
from .errors import Forbidden, OrderNotFound, OrderServiceError
from .publisher import RedisEventPublisher
from .schemas import (
    CreateOrderRequest,
    OrderEventRead,
    OrderPage,
    OrderRead,
    UpdateStatusRequest,
)
from .workflow import OrderWorkflow

logger = logging.getLogger(__name__)

ROLES = ("customer", "admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # テストなどで外から注入済みならそれを使う
    if app.state.workflow is not None:
        yield
        return

    settings: Settings = app.state.settings or Settings.from_env()
    app.state.settings = settings
    configure_logging(settings.log_level)

    engine = db.create_engine(settings.database_url)
    if settings.create_tables:
        await db.create_tables(engine)
    redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)
    app.state.workflow = OrderWorkflow(
        db.create_session_factory(engine),
        RedisEventPublisher(
            redis_pool,
            settings.order_events_channel,
            timeout=settings.publish_timeout_seconds,
        ),
        write_timeout=settings.request_timeout_seconds,
    )
    logger.info("Order service started")
    try:
        yield
    finally:
        await redis_pool.aclose()
        await engine.dispose()
        app.state.workflow = None


# ── Identity ─────────────────────────────────────


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_principal(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Principal:
    if x_user_id is None or x_user_role is None:
        raise HTTPException(401, "Missing X-User-Id / X-User-Role header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(401, "Invalid X-User-Id header") from None
    role = x_user_role.lower()
    if role not in ROLES:
        raise HTTPException(401, "Invalid X-User-Role header")
    return Principal(user_id=user_id, role=role)


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise Forbidden()
    return principal


def get_workflow(request: Request) -> OrderWorkflow:
    return request.app.state.workflow


# ── Error Handlers ───────────────────────────────


def _error_body(code: str, message: str, **details) -> dict:
    return {"success": False, "code": code, "message": message, **details}


async def handle_order_error(request: Request, exc: OrderServiceError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, **exc.details()),
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTPStatus(exc.status_code).phrase.lower().replace(" ", "_")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_body(
            "validation_error", "Invalid request", errors=jsonable_encoder(exc.errors())
        ),
    )


async def handle_db_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "Internal server error"),
    )


# ── App ──────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    workflow: OrderWorkflow | None = None,
) -> FastAPI:
    app = FastAPI(title="Order Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.workflow = workflow
    app.add_exception_handler(OrderServiceError, handle_order_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(SQLAlchemyError, handle_db_error)

    # ── Admin ────────────────────────────────────

    @app.get("/orders", response_model=OrderPage)
    async def list_orders(
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: OrderStatus | None = None,
        _admin: Principal = Depends(require_admin),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        """全注文一覧 (ページング・検索)"""
        return await workflow.get_orders(page, limit, search, status)

    @app.patch("/orders/{order_id}/status", response_model=OrderRead)
    async def update_order_status(
        order_id: UUID,
        req: UpdateStatusRequest,
        admin: Principal = Depends(require_admin),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        """注文ステータス変更"""
        return await workflow.update_order_status(order_id, req.status, admin.user_id)

    @app.get("/orders/{order_id}/events", response_model=list[OrderEventRead])
    async def get_order_events(
        order_id: UUID,
        _admin: Principal = Depends(require_admin),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        """注文のイベントログ"""
        return await workflow.get_order_events(order_id)

    # ── User ─────────────────────────────────────

    @app.get("/orders/my", response_model=list[OrderRead])
    async def my_orders(
        principal: Principal = Depends(get_principal),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        return await workflow.get_user_orders(principal.user_id)

    @app.get("/orders/{order_id}", response_model=OrderRead)
    async def get_order(
        order_id: UUID,
        principal: Principal = Depends(get_principal),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        """注文詳細。管理者以外は自分の注文のみ参照できる。"""
        owner = None if principal.is_admin else principal.user_id
        order = await workflow.get_order_by_id(order_id, owner)
        if not order:
            raise OrderNotFound(order_id)
        return order

    @app.post("/orders", response_model=OrderRead, status_code=201)
    async def create_order(
        req: CreateOrderRequest,
        principal: Principal = Depends(get_principal),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        return await workflow.create_order(principal.user_id, req.items)

    @app.put("/orders/{order_id}/cancel", response_model=OrderRead)
    async def cancel_order(
        order_id: UUID,
        principal: Principal = Depends(get_principal),
        workflow: OrderWorkflow = Depends(get_workflow),
    ):
        return await workflow.cancel_order(order_id, principal.user_id, principal.is_admin)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "order-service"}

    return app


app = create_app()
