"""
FastAPI application for the reporting API.

Ledger errors map to HTTP statuses: missing entities 404, conflicts with the current ledger
state 409, invalid input 422, lock timeouts and missing quotes 503.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date  # noqa: TC003 - Required at runtime for FastAPI introspection
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from liquidity_ledger import __version__
from liquidity_ledger.exceptions import (
    ConcurrencyConflictError,
    InsufficientLiquidityError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    OverAllocationError,
    PriceUnavailableError,
    ValidationError,
)
from liquidity_ledger.portfolio.services import LedgerServices  # noqa: TC001
from liquidity_ledger.server.schemas import (
    EvolutionPointOut,
    FillConfirm,
    FillCreate,
    FillDiscard,
    PeriodReturnOut,
    PoolStateOut,
    PortfolioValueOut,
    PositionCreate,
    PositionOut,
)
from liquidity_ledger.types import PoolName

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

    Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]

logger = structlog.get_logger()

router = APIRouter()


def get_services(request: Request) -> LedgerServices:
    services: LedgerServices = request.app.state.services
    return services


Services = Annotated[LedgerServices, Depends(get_services)]


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, OverAllocationError | InsufficientLiquidityError | InvalidStateError):
        return 409
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ConcurrencyConflictError | PriceUnavailableError):
        return 503
    return 400


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    code = _status_for(exc)
    logger.info("Request rejected", path=request.url.path, status=code, error=str(exc))
    headers = {"Retry-After": "1"} if isinstance(exc, ConcurrencyConflictError) else None
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": str(exc)},
        headers=headers,
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": __version__}


@router.get("/pools/{pool}", response_model=PoolStateOut)
async def get_pool(pool: PoolName, services: Services) -> PoolStateOut:
    return PoolStateOut.from_state(await services.allocator.pool_state(pool))


@router.get("/portfolio/value", response_model=PortfolioValueOut)
async def get_portfolio_value(pool: PoolName, services: Services) -> PortfolioValueOut:
    """Current total value of a pool with per-position marks."""
    valuation = await services.valuator.current_value(pool)
    return PortfolioValueOut.from_valuation(valuation)


@router.get("/portfolio/evolution", response_model=list[EvolutionPointOut])
async def get_portfolio_evolution(
    pool: PoolName,
    services: Services,
    start: Annotated[date, Query(alias="from")],
    end: Annotated[date | None, Query(alias="to")] = None,
) -> list[EvolutionPointOut]:
    """Daily total value between two dates (carry-forward across gaps)."""
    points = await services.snapshots.evolution_series(pool, start, end)
    return [EvolutionPointOut.from_point(p) for p in points]


@router.get("/portfolio/returns", response_model=list[PeriodReturnOut])
async def get_portfolio_returns(pool: PoolName, services: Services) -> list[PeriodReturnOut]:
    results = await services.valuator.returns_by_period(pool)
    return [PeriodReturnOut.from_result(r) for r in results.values()]


@router.post("/positions", response_model=PositionOut, status_code=201)
async def create_position(body: PositionCreate, services: Services) -> PositionOut:
    """Open a position, allocating capital from its pool."""
    state = await services.allocator.open_position(
        body.pool, body.symbol, body.side, body.pricing(), body.amount, opened_at=body.opened_at
    )
    return PositionOut.from_state(state)


@router.get("/positions/{position_id}", response_model=PositionOut)
async def get_position(position_id: str, services: Services) -> PositionOut:
    return PositionOut.from_state(await services.allocator.get_position(position_id))


@router.post(
    "/positions/{position_id}/fills",
    response_model=PositionOut,
    status_code=201,
)
async def create_fill(position_id: str, body: FillCreate, services: Services) -> PositionOut:
    """Record a sale: executed with `price`, pending with a price range."""
    if body.price is not None:
        state = await services.allocator.record_fill(
            position_id, body.percentage_sold, body.price, body.effective_date
        )
    else:
        state = await services.allocator.schedule_fill(
            position_id, body.percentage_sold, body.sale_range(), body.effective_date
        )
    return PositionOut.from_state(state)


@router.post("/fills/{fill_id}/confirm", response_model=PositionOut)
async def confirm_fill(fill_id: str, body: FillConfirm, services: Services) -> PositionOut:
    state = await services.allocator.confirm_fill(fill_id, body.price, body.effective_date)
    return PositionOut.from_state(state)


@router.post("/fills/{fill_id}/discard", response_model=PositionOut)
async def discard_fill(fill_id: str, body: FillDiscard, services: Services) -> PositionOut:
    """Void a fill (idempotent)."""
    state = await services.allocator.discard_fill(fill_id, body.reason)
    return PositionOut.from_state(state)


def create_app(services: LedgerServices, lifespan: Lifespan | None = None) -> FastAPI:
    """Build the API around already-constructed services."""
    app = FastAPI(
        title="Liquidity Ledger",
        version=__version__,
        description="Pool allocation, P&L and portfolio valuation",
        lifespan=lifespan,
    )
    app.state.services = services
    app.exception_handler(LedgerError)(ledger_error_handler)
    app.include_router(router)
    return app


def create_app_from_env() -> FastAPI:
    """Build the API with its own database, configured from the environment."""
    from liquidity_ledger.config import LedgerConfig
    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.portfolio.services import build_services

    config = LedgerConfig.from_env()
    db = DatabaseManager(config.db_path)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await db.create_tables()
        logger.info("API started", db_path=str(config.db_path))
        yield
        await db.close()

    return create_app(build_services(db, config), lifespan=lifespan)
