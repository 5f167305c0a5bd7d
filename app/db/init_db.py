"""
Create the fee ledger tables.

Run once against a new database:
    python -m app.db.init_db
"""
import asyncio

# Import all models so they are registered on Base.metadata
from app.core import models  # noqa: F401
from app.db.session import Base, engine


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def main() -> None:
    """Main entry point for the bootstrap script."""
    try:
        await init_db()
    finally:
        await engine.dispose()
    print("✅ Fee ledger tables created")


if __name__ == "__main__":
    asyncio.run(main())
