#!/usr/bin/env python3
"""
Costing Engine Database Initialization Script
Creates the costing tables on the configured database
"""
import sys
from pathlib import Path

# Add parent directory to path to import costing_engine modules
sys.path.append(str(Path(__file__).parent.parent))

from sqlalchemy import inspect
from costing_engine.core.database import engine, init_db, check_db_connection
from costing_engine.core.logging import setup_logging, get_logger

logger = get_logger("init_db")

EXPECTED_TABLES = [
    "inventory_batches",
    "batch_movements",
    "purchase_order_costs",
    "cost_allocations",
    "cost_allocation_lines",
    "product_costing",
    "costing_audit_log",
]


def init_database():
    """Create missing tables and report what exists"""
    logger.info(f"Initializing database at {engine.url.render_as_string(hide_password=True)}")

    if not check_db_connection():
        raise RuntimeError("Database connection failed")

    try:
        init_db()

        existing = set(inspect(engine).get_table_names())
        missing = [table for table in EXPECTED_TABLES if table not in existing]
        if missing:
            raise RuntimeError(f"Tables missing after initialization: {', '.join(missing)}")

        for table in EXPECTED_TABLES:
            logger.info(f"Table {table} ready")
        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


if __name__ == "__main__":
    setup_logging()
    init_database()
