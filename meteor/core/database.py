import os

from databases import Database

from meteor.core.logger import logger


async def setup_database(database: Database, database_type: str = "sqlite", path: str = None):
    if database_type == "sqlite" and path:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(path):
            open(path, "a").close()

    await database.connect()

    await database.execute(
        """
            CREATE TABLE IF NOT EXISTS stream_cache (
                key TEXT PRIMARY KEY,
                provider TEXT,
                payload TEXT,
                cached_at REAL,
                expires_at REAL
            )
        """
    )

    await database.execute(
        """
            CREATE INDEX IF NOT EXISTS idx_stream_cache_expires
            ON stream_cache (expires_at)
        """
    )

    logger.log("CACHE", f"Database ready ({database_type})")


async def teardown_database(database: Database):
    if database.is_connected:
        await database.disconnect()
