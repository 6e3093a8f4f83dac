"""Database setup and verification"""
import logging
from pathlib import Path
from typing import Optional

from src.database.connection import DatabaseConnection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"
REQUIRED_TABLES = ('products_list', 'protocols_list', 'token_lists')


def split_statements(sql_content: str):
    """Split a migration file into executable statements, skipping comments"""
    statements = []
    for chunk in sql_content.split(';'):
        lines = [
            line for line in chunk.splitlines()
            if line.strip() and not line.strip().startswith('--')
        ]
        if lines:
            statements.append('\n'.join(lines).strip())
    return statements


def run_migration_file(conn, migration_file: Path):
    """Run a SQL migration file"""
    logger.info(f"Running migration: {migration_file.name}")

    with open(migration_file, 'r') as f:
        sql_content = f.read()

    with conn.cursor() as cur:
        for statement in split_statements(sql_content):
            cur.execute(statement)
    conn.commit()
    logger.info(f"Migration {migration_file.name} completed")


def setup_database(db: DatabaseConnection, migrations_dir: Optional[Path] = None):
    """Apply every migration in name order"""
    migrations_dir = migrations_dir or MIGRATIONS_DIR
    migration_files = sorted(migrations_dir.glob("*.sql"))
    if not migration_files:
        logger.warning(f"No migration files found in {migrations_dir}")
        return

    with db.connection() as conn:
        try:
            for migration_file in migration_files:
                run_migration_file(conn, migration_file)
            logger.info("Database setup completed successfully")
        except Exception as e:
            conn.rollback()
            logger.error(f"Database setup failed: {e}")
            raise


def verify_setup(db: DatabaseConnection) -> bool:
    """Verify the metadata and product tables exist"""
    logger.info("Verifying database setup...")

    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name IN %s
                ORDER BY table_name
            """, (REQUIRED_TABLES,))
            tables = [row[0] for row in cur.fetchall()]

    missing = set(REQUIRED_TABLES) - set(tables)
    if missing:
        logger.error(f"Missing tables: {missing}")
        return False

    logger.info(f"All required tables exist: {tables}")
    return True


if __name__ == '__main__':
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    database = DatabaseConnection()
    try:
        setup_database(database)
        ok = verify_setup(database)
    finally:
        database.close_all()
    sys.exit(0 if ok else 1)
