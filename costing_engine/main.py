"""
Costing Engine FastAPI Main Application
Entry point for the inventory costing and landed-cost allocation REST API
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from costing_engine.core.config import settings
from costing_engine.core.database import check_db_connection, init_db
from costing_engine.core.exceptions import CostingException, InconsistentLedgerState
from costing_engine.core.logging import setup_logging
from costing_engine.api.v1.api_router import api_router

logger = logging.getLogger("costing.api")

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Inventory Costing & Landed-Cost Allocation API

    Per-batch cost ledger with purchase-order landed-cost distribution.

    ### Key Features:
    - **Batch Ledger**: Goods receipts, consumption events and return reversals
    - **Landed Cost**: Freight, insurance, duty, handling and other charges allocated by value, weight or quantity
    - **Valuation**: FIFO, LIFO, weighted-average and standard cost
    - **Allocation Ranking**: Batch candidates scored on cost, expiry and sufficiency
    - **Cost Impact**: Method comparisons with a turnover-based recommendation
    """,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring and load balancers

    Returns system status and database connectivity
    """
    try:
        db_status = check_db_connection()

        return {
            "status": "healthy" if db_status else "degraded",
            "version": settings.APP_VERSION,
            "database": "connected" if db_status else "disconnected",
            "debug": settings.DEBUG
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")


# System information endpoint
@app.get("/info", tags=["System"])
async def system_info():
    """
    System information endpoint

    Returns application configuration and build information
    """
    return {
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "api_version": "v1",
        "docs_url": settings.DOCS_URL,
        "base_currency": settings.BASE_CURRENCY,
        "features": [
            "Batch Ledger",
            "Landed Cost Allocation",
            "FIFO / LIFO / Weighted Average / Standard Valuation",
            "Optimal Batch Allocation",
            "Cost Impact Analysis",
            "Cost Analysis Reporting"
        ],
        "allocation_strategies": sorted(list(settings.STRATEGY_WEIGHTS.keys()) + ["fifo_strict"]),
    }


# Application startup event
@app.on_event("startup")
async def startup_event():
    """
    Application startup tasks

    Configure logging, verify the database and create missing tables
    """
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if not check_db_connection():
        logger.error("Failed to connect to database on startup")
        raise RuntimeError("Database connection failed")

    logger.info("Database connection established")
    init_db()
    logger.info("Application startup completed successfully")


# Application shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down application")


@app.exception_handler(CostingException)
async def costing_exception_handler(request: Request, exc: CostingException):
    """
    Render costing errors with their status code

    Ledger inconsistencies are logged for an operator; the transaction was already rolled back.
    """
    if isinstance(exc, InconsistentLedgerState):
        logger.error(f"Inconsistent ledger state on {request.url.path}: {exc.message} {exc.context}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors

    Args:
        request: FastAPI request object
        exc: Exception that occurred

    Returns:
        JSON error response
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "type": "server_error"
        }
    )


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "costing_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
