"""
WebSocket-лента событий о заказах для кухни и кассы.
Клиент ничего не отправляет, только слушает сообщения вида {"type": ..., "payload": ...}.
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from restaurant_orders.broadcast import Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.get()
        await websocket.send_json(event.as_message())


@router.websocket("/ws")
async def orders_feed(websocket: WebSocket):
    channel = websocket.app.state.channel
    # подписываемся до accept, чтобы не потерять события сразу после подключения
    subscription = channel.subscribe()
    sender = None
    try:
        await websocket.accept()
        logger.info("WebSocket client connected (%d subscribers)", channel.subscriber_count)

        sender = asyncio.create_task(_forward_events(websocket, subscription))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
        channel.unsubscribe(subscription)
