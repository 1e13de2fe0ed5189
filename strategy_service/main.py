"""FastAPI application entry point and composition root."""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from strategy_service.config import settings
from strategy_service.database import create_db_and_tables, engine
from strategy_service.utils.logging import setup_logging
from strategy_service.api import holdings, jobs, system, triggers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, restore active jobs, and tear everything down on shutdown."""
    from strategy_service.engine.job_manager import JobManager
    from strategy_service.engine.workers.base import WorkerContext
    from strategy_service.services.activity_log import ActivityLog
    from strategy_service.services.holdings_tracker import HoldingsTracker
    from strategy_service.services.job_store import JobStore
    from strategy_service.services.pair_trade_executor import PairTradeExecutor
    from strategy_service.services.price_feed import PriceFeedService
    from strategy_service.services.solana_rpc import SolanaRpcClient
    from strategy_service.services.swap_gateway import JupiterSwapGateway
    from strategy_service.services.trigger_service import TriggerService
    from strategy_service.services.valuation import ValuationService

    setup_logging()
    create_db_and_tables()

    scheduler = AsyncIOScheduler()
    rpc = SolanaRpcClient(settings.rpc_url)
    swap_gateway = JupiterSwapGateway(
        rpc,
        settings.jupiter_api_url,
        max_attempts=settings.swap_max_attempts,
        retry_delay_seconds=settings.swap_retry_delay_seconds,
        timeout_seconds=settings.swap_timeout_seconds,
        confirm_poll_seconds=settings.confirm_poll_seconds,
    )
    price_feed = PriceFeedService(
        settings.hermes_url,
        {"sol": settings.pyth_sol_feed_id, "usdc": settings.pyth_usdc_feed_id},
        scheduler=scheduler,
        poll_seconds=settings.price_poll_seconds,
    )
    valuation = ValuationService(
        settings.valuation_api_url,
        timeout_seconds=settings.valuation_timeout_seconds,
        cache_ttl_seconds=settings.valuation_cache_ttl_seconds,
    )
    holdings_tracker = HoldingsTracker(engine)
    executor = PairTradeExecutor(
        rpc,
        swap_gateway,
        holdings_tracker,
        fee_account=settings.fee_account,
        default_slippage_bps=settings.default_slippage_bps,
    )
    activity_log = ActivityLog(engine)
    job_store = JobStore(engine)

    ctx = WorkerContext(
        rpc=rpc,
        swap_gateway=swap_gateway,
        price_feed=price_feed,
        scheduler=scheduler,
        activity_log=activity_log,
        holdings_tracker=holdings_tracker,
        pair_trade_executor=executor,
        valuation=valuation,
        settings=settings,
    )
    job_manager = JobManager(ctx, job_store=job_store)
    trigger_service = TriggerService(job_manager, engine=engine)

    app.state.job_manager = job_manager
    app.state.job_store = job_store
    app.state.trigger_service = trigger_service
    app.state.holdings_tracker = holdings_tracker
    app.state.valuation_service = valuation
    app.state.price_feed = price_feed
    app.state.activity_log = activity_log

    scheduler.start()
    price_feed.start()
    await job_manager.load_jobs()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")

    yield

    await job_manager.stop_all()
    scheduler.shutdown(wait=False)
    await swap_gateway.close()
    await valuation.close()
    await rpc.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Strategy Service",
    description="Solana strategy execution: wallet mirroring, price triggers and pair-trade signals",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(triggers.router)
app.include_router(jobs.router)
app.include_router(holdings.router)
app.include_router(system.router)
