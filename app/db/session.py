import logging
from typing import Any, Awaitable, Callable, TypeVar

from pymongo.errors import PyMongoError

from app.core.config import settings
from app.db.mongo import mongodb

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def get_database():
    """Return the active database connection."""
    return mongodb.db


async def run_in_transaction(
    db: Any,
    callback: Callable[[Any], Awaitable[T]],
    max_retries: int | None = None,
) -> T:
    """
    Run ``callback(session)`` inside one multi-document transaction.

    The whole callback is re-run when the driver labels the failure
    TransientTransactionError (write conflict with a concurrent transaction).
    Any other exception aborts the transaction and propagates unchanged.
    """
    if max_retries is None:
        max_retries = settings.TRANSACTION_MAX_RETRIES

    attempt = 0
    while True:
        async with await db.client.start_session() as session:
            try:
                async with session.start_transaction():
                    return await callback(session)
            except PyMongoError as exc:
                if exc.has_error_label("TransientTransactionError") and attempt < max_retries:
                    attempt += 1
                    logger.warning(
                        "Transient transaction error, retrying (%d/%d): %s",
                        attempt, max_retries, exc
                    )
                    continue
                raise
