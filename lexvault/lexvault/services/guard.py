import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from lexvault.errors import storage_unavailable
from lexvault.stores.blob import BlobNotFoundError, BlobStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await a blob or relational store call under a timeout.

    Timeouts and store failures surface as STORAGE_UNAVAILABLE. A missing blob
    is passed through so callers can decide what it means.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except BlobNotFoundError:
        raise
    except (asyncio.TimeoutError, SQLAlchemyError, BlobStoreError) as e:
        logger.error(f"{operation} failed: {e!r}")
        raise storage_unavailable() from e
