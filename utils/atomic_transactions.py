"""Transaction scope for writes that must land together: order status, refund, commission, audit row"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_DEPTH_ATTR = '_atomic_transaction_depth'


@asynccontextmanager
async def async_atomic_transaction(
    session: AsyncSession, label: Optional[str] = None
) -> AsyncGenerator[AsyncSession, None]:
    """
    Commit everything staged on the session when the outermost scope exits cleanly,
    roll back and re-raise otherwise.

    Scopes nest on the same session: only the outermost one commits, and a failure at
    any depth rolls back the whole unit.
    """
    depth = getattr(session, _DEPTH_ATTR, 0)
    name = label or "unit"
    setattr(session, _DEPTH_ATTR, depth + 1)
    try:
        yield session
        if depth == 0:
            await session.commit()
            logger.debug(f"TX_COMMIT: {name}")
        else:
            logger.debug(f"TX_NESTED_DONE: {name} depth={depth + 1}, commit deferred")
    except Exception as e:
        await session.rollback()
        logger.error(f"❌ TX_ROLLBACK: {name} depth={depth + 1} error={e}")
        raise
    finally:
        setattr(session, _DEPTH_ATTR, max(0, getattr(session, _DEPTH_ATTR, 1) - 1))
