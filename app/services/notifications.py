"""
实时通知通道

维护已认证 WebSocket 连接：
- 每个用户可以有多个连接（多个标签页 / 设备）
- 每个连接自动加入个人房间 user_<id>，也可以按需加入其他房间
- 发送失败的连接视为已断开，立即清理

消息格式：{"event": "事件名", "data": {...}}
"""

from collections import defaultdict
from typing import Any

from fastapi import WebSocket

from app.infra.logging import get_logger

logger = get_logger(__name__)


# 每个用户的个人房间，只有本人可以加入
USER_ROOM_PREFIX = "user_"


def user_room(user_id: str) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


class NotificationHub:
    def __init__(self) -> None:
        # user_id -> 连接集合
        self.connections: dict[str, set[WebSocket]] = defaultdict(set)
        # room -> 连接集合
        self.rooms: dict[str, set[WebSocket]] = defaultdict(set)
        # 连接 -> user_id
        self._owners: dict[WebSocket, str] = {}

    async def connect(self, user_id: str, websocket: WebSocket, *, accept: bool = True) -> None:
        if accept:
            await websocket.accept()
        self.connections[user_id].add(websocket)
        self._owners[websocket] = user_id
        self.join_room(websocket, user_room(user_id))
        logger.info(f"WebSocket 已连接: user={user_id} 连接数={len(self.connections[user_id])}")

    def disconnect(self, websocket: WebSocket) -> None:
        user_id = self._owners.pop(websocket, None)
        for room in list(self.rooms):
            self._discard(self.rooms, room, websocket)
        if user_id is not None:
            self._discard(self.connections, user_id, websocket)
            logger.info(f"WebSocket 已断开: user={user_id}")

    @staticmethod
    def _discard(index: dict[str, set[WebSocket]], key: str, websocket: WebSocket) -> None:
        members = index.get(key)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del index[key]

    def join_room(self, websocket: WebSocket, room: str) -> None:
        if room:
            self.rooms[room].add(websocket)

    def leave_room(self, websocket: WebSocket, room: str) -> None:
        if room:
            self._discard(self.rooms, room, websocket)

    async def _send(self, targets: set[WebSocket], event: str, data: Any) -> int:
        delivered = 0
        dead = []
        for websocket in list(targets):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.warning(f"WebSocket 发送失败，移除连接: {e}")
                dead.append(websocket)
        for websocket in dead:
            self.disconnect(websocket)
        return delivered

    async def send_to_user(self, user_id: str, event: str, data: Any = None) -> int:
        """发送给某个用户的所有连接，返回成功送达的连接数"""
        return await self._send(self.connections.get(user_id, set()), event, data)

    async def send_to_room(self, room: str, event: str, data: Any = None) -> int:
        return await self._send(self.rooms.get(room, set()), event, data)

    async def broadcast(self, event: str, data: Any = None) -> int:
        return await self._send(set(self._owners), event, data)

    def connected_users(self) -> list[str]:
        return list(self.connections)

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self.connections.get(user_id))


hub = NotificationHub()


def get_hub() -> NotificationHub:
    return hub
