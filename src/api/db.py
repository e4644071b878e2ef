"""
Review Synthesis Database Connection
====================================

Pooled psycopg2 connections shared by the synthesis store and the
internal review source.
"""

import logging
from contextlib import contextmanager

from psycopg2 import pool as pg_pool

from ..data.config import get_settings

logger = logging.getLogger(__name__)

_pool = None


def get_pool():
    """Get or create connection pool (lazy singleton). None if unreachable."""
    global _pool
    if _pool is not None:
        return _pool

    config = get_settings().database
    params = config.connection_dict
    try:
        _pool = pg_pool.ThreadedConnectionPool(config.pool_min_size, config.pool_max_size, **params)
        logger.info(f"DB pool created: {params['host']}:{params['port']}/{params['dbname']}")
        return _pool
    except Exception as e:
        logger.warning(f"Failed to create DB pool: {e}")
        return None


def close_pool():
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("DB pool closed")


@contextmanager
def get_connection():
    """Get a connection from the pool (context manager)."""
    pool = get_pool()
    if pool is None:
        raise ConnectionError("Database pool not available")
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn)

