import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool

from facepunch.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    def __init__(self):
        self.engine: Optional[AsyncEngine] = None
        self.async_session = None
        self.is_connected = False

    async def connect(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        """Create the async engine and session factory"""
        settings = get_settings()
        url = database_url or settings.database_url
        try:
            self.engine = create_async_engine(
                url,
                echo=settings.db_echo if echo is None else echo,
                pool_pre_ping=True,
                poolclass=NullPool
            )

            self.async_session = sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            self.is_connected = True
            logger.info(f"Connected to database: {self.engine.url.render_as_string(hide_password=True)}")
            return True

        except Exception as e:
            logger.error(f"Error connecting to database: {e}")
            self.is_connected = False
            return False

    async def disconnect(self):
        """Dispose the engine"""
        if self.engine:
            await self.engine.dispose()
            self.is_connected = False
            logger.info("Database connection closed")

    def get_session(self) -> AsyncSession:
        """Get async database session"""
        if not self.is_connected:
            raise RuntimeError("Database is not connected. Call connect() first.")
        return self.async_session()

    async def create_tables(self):
        """Create all tables defined in Base metadata"""
        # model modules register themselves on Base.metadata when imported
        import facepunch.models.attendance  # noqa: F401
        import facepunch.models.employee  # noqa: F401
        import facepunch.models.face  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully")

    async def check_connection(self) -> bool:
        if not self.is_connected:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False


# Create global database instance
database = Database()
