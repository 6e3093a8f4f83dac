"""Database connection management"""
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import psycopg2
import yaml
from psycopg2 import pool

from src.errors import RefreshInProgress

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Manages database connection pool"""

    def __init__(self, config_path: Optional[str] = None, dsn: Optional[str] = None):
        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "database.yaml"
        self.config_path = Path(config_path)
        self.dsn = dsn or os.environ.get("DATABASE_URL")
        self.connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self.db_config = {}
        if not self.dsn:
            self.load_config()

    def load_config(self):
        """Load database configuration"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Database config not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f)

        self.db_config = config.get('database', {})

    def get_connection_pool(self):
        """Get or create connection pool"""
        if self.connection_pool is None:
            minconn = self.db_config.get('minconn', 1)
            maxconn = self.db_config.get('maxconn', 10)
            if self.dsn:
                self.connection_pool = pool.ThreadedConnectionPool(minconn, maxconn, dsn=self.dsn)
            else:
                self.connection_pool = pool.ThreadedConnectionPool(
                    minconn=minconn,
                    maxconn=maxconn,
                    host=self.db_config.get('host', 'localhost'),
                    port=self.db_config.get('port', 5432),
                    database=self.db_config.get('database'),
                    user=self.db_config.get('user'),
                    password=self.db_config.get('password')
                )
        return self.connection_pool

    def get_connection(self):
        """Get a connection from the pool"""
        pool = self.get_connection_pool()
        return pool.getconn()

    def return_connection(self, conn):
        """Return a connection to the pool"""
        pool = self.get_connection_pool()
        pool.putconn(conn)

    @contextmanager
    def connection(self):
        """Borrow one pooled connection for the duration of the block"""
        conn = self.get_connection()
        try:
            yield conn
        finally:
            self.return_connection(conn)

    @contextmanager
    def advisory_lock(self, name: str):
        """
        Hold a session-level Postgres advisory lock keyed by ``name``.

        Raises:
            RefreshInProgress: if another session already holds the lock
        """
        conn = self.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (name,))
                acquired = cur.fetchone()[0]
            conn.commit()
            if not acquired:
                raise RefreshInProgress(name)

            logger.info("Acquired advisory lock %s", name)
            try:
                yield
            finally:
                try:
                    with conn.cursor() as cur:
                        cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (name,))
                    conn.commit()
                except psycopg2.Error as e:
                    logger.error("Failed to release advisory lock %s: %s", name, e)
        finally:
            self.return_connection(conn)

    def close_all(self):
        """Close all connections in the pool"""
        if self.connection_pool:
            self.connection_pool.closeall()
            self.connection_pool = None
