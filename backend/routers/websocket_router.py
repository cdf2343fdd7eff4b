# routers/websocket_router.py — Real-time notification delivery
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Set

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from auth import AuthService
from database import get_session_factory
from repositories import MemberRepository

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("taskhub.ws")


class ConnectionManager:
    """One room per member id; a member may have several open sockets.

    Sends to one socket are serialized with a per-socket lock, so a socket
    receives events in the order they were published.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = {}  # member_id -> sockets
        self._locks: Dict[WebSocket, asyncio.Lock] = {}

    async def connect(self, websocket: WebSocket, member_id: str):
        await websocket.accept()
        self.join(websocket, member_id)
        logger.info(f"WS connected: member={member_id[:8]}")

    def join(self, websocket: WebSocket, member_id: str):
        self._rooms.setdefault(member_id, set()).add(websocket)
        self._locks.setdefault(websocket, asyncio.Lock())

    def disconnect(self, websocket: WebSocket, member_id: str):
        room = self._rooms.get(member_id)
        if room is not None:
            room.discard(websocket)
            if not room:
                del self._rooms[member_id]
        self._locks.pop(websocket, None)
        logger.info(f"WS disconnected: member={member_id[:8]}")

    async def send(self, websocket: WebSocket, message: Dict[str, Any]):
        lock = self._locks.setdefault(websocket, asyncio.Lock())
        async with lock:
            await websocket.send_json(message)

    async def publish(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        """Push a notification to every socket in the recipient's room; no room, no delivery."""
        sockets = list(self._rooms.get(recipient_id, ()))
        if not sockets:
            return
        message = {"type": "notification", "data": payload}
        for ws in sockets:
            try:
                await self.send(ws, message)
            except Exception as e:
                logger.warning(f"WS send failed for member={recipient_id[:8]}: {e}")
                self.disconnect(ws, recipient_id)

    def is_online(self, member_id: str) -> bool:
        return bool(self._rooms.get(member_id))

    def get_stats(self) -> dict:
        return {
            "total_connections": sum(len(room) for room in self._rooms.values()),
            "members_online": len(self._rooms),
        }


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(default=""),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Authenticate with the API access token, then join the member's own room.

    Like HTTP auth, the token must belong to a member who is still active.
    """
    payload = AuthService.decode_access_token(token) if token else None
    member = None
    if payload:
        async with session_factory() as db:
            member = await MemberRepository(db).find_by_id(payload.get("company_id") or "", payload["sub"])
    if member is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    member_id = member.id
    manager: ConnectionManager = websocket.app.state.connections
    await manager.connect(websocket, member_id)
    await manager.send(websocket, {
        "type": "connected",
        "member_id": member_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })

    try:
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await manager.send(websocket, {
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
    except WebSocketDisconnect:
        manager.disconnect(websocket, member_id)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket, member_id)


@router.get("/ws/stats")
async def websocket_stats(request: Request):
    """WebSocket connection statistics"""
    return request.app.state.connections.get_stats()
