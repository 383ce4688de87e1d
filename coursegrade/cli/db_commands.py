"""
Database CLI Commands

Database operations: init
"""
import asyncio
from typing import Optional

from coursegrade.database import DATABASE_URL, build_engine, init_db


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False, database_url: Optional[str] = None):
        self.dry_run = dry_run
        self.database_url = database_url or DATABASE_URL

    def execute(self, args) -> int:
        """Execute database command."""
        if args.db_action == "init":
            return self._init(args)
        else:
            print("Error: Unknown database action")
            return 1

    def _init(self, args) -> int:
        """Create every table that does not exist yet."""
        print("=== Database Init ===")

        if self.dry_run:
            print("[DRY RUN] Would create tables")
            return 0

        try:
            asyncio.run(self._async_init())
        except Exception as e:
            print(f"Init failed: {e}")
            return 1

        print("✓ Tables created")
        return 0

    async def _async_init(self) -> None:
        engine = build_engine(self.database_url)
        try:
            await init_db(bind=engine)
        finally:
            await engine.dispose()
