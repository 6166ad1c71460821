from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dm_chat.utils.security import bearer_token
from dm_chat.utils.websocket_manager import Connection, PresenceHub


router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    hub: PresenceHub = websocket.app.state.hub
    # credential via ?token=... or an Authorization header on the handshake
    token = websocket.query_params.get("token") or bearer_token(websocket.headers.get("authorization"))
    connection = Connection(websocket)
    if not await hub.authenticate(connection, token):
        return
    await hub.join(connection)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                # binary frames carry nothing we understand
                continue
            await hub.handle_frame(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.leave(connection)
