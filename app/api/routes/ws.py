"""
实时通知 WebSocket（/api/ws?token=<access token>）

连接时校验 access token，失败以 4401 关闭。
客户端消息：
    {"event": "joinRoom", "room": "..."}
    {"event": "leaveRoom", "room": "..."}
其他用户的个人房间（user_<id>）不能加入。
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.deps import get_auth_service
from app.exceptions import AppError
from app.infra.logging import get_logger, set_user_id
from app.services.auth import AuthService
from app.services.notifications import USER_ROOM_PREFIX, NotificationHub, get_hub, user_room

logger = get_logger(__name__)

router = APIRouter()

WS_UNAUTHORIZED = 4401


@router.websocket("/ws")
async def notifications_ws(
    websocket: WebSocket,
    auth: AuthService = Depends(get_auth_service),
    hub: NotificationHub = Depends(get_hub),
):
    token = websocket.query_params.get("token")
    try:
        user = await auth.authenticate_token(token)
    except AppError as e:
        await websocket.close(code=WS_UNAUTHORIZED, reason=e.message)
        return

    set_user_id(user.id)
    await hub.connect(user.id, websocket)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                # 非 JSON 消息
                await websocket.send_json({"event": "error", "data": {"message": "Invalid message"}})
                continue
            if not isinstance(message, dict):
                continue
            event, room = message.get("event"), message.get("room")
            if event == "joinRoom" and room:
                room = str(room)
                if room.startswith(USER_ROOM_PREFIX) and room != user_room(user.id):
                    await websocket.send_json({"event": "error", "data": {"message": "Cannot join this room", "room": room}})
                    continue
                hub.join_room(websocket, room)
                await websocket.send_json({"event": "joinedRoom", "data": {"room": room}})
            elif event == "leaveRoom" and room:
                hub.leave_room(websocket, str(room))
                await websocket.send_json({"event": "leftRoom", "data": {"room": room}})
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
