import asyncio
import functools
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.config import get_settings
from facepunch.core.errors import AttendanceError, DataLayerError

logger = logging.getLogger(__name__)


async def _rollback(db: AsyncSession, name: str):
    try:
        await db.rollback()
    except SQLAlchemyError as e:
        logger.error(f"{name} rollback failed: {e}")


def data_layer(func):
    """
    Bound a CRUD coroutine by the configured database timeout.

    Timeouts and SQLAlchemy errors surface as DataLayerError after the
    session passed as the first argument is rolled back; pipeline errors
    raised inside the call pass through untouched.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        timeout = get_settings().db_timeout
        db = args[0] if args and isinstance(args[0], AsyncSession) else None
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout)
        except AttendanceError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"{func.__name__} timed out after {timeout}s")
            if db is not None:
                await _rollback(db, func.__name__)
            raise DataLayerError(details=f"{func.__name__} timed out after {timeout}s")
        except SQLAlchemyError as e:
            logger.error(f"{func.__name__} failed: {e}")
            if db is not None:
                await _rollback(db, func.__name__)
            raise DataLayerError(details=str(e.__class__.__name__))

    return wrapper
