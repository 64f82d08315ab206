from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.broadcast import BroadcastChannel
from restaurant_orders.db.session import AsyncSessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Использовать в Depends(get_async_session)
    Пример: async def endpoint(db: AsyncSession = Depends(get_async_session))
    """
    async with AsyncSessionLocal() as session:
        yield session


def get_broadcast_channel(request: Request) -> BroadcastChannel:
    # канал создаётся в lifespan приложения
    return request.app.state.channel
