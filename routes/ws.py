import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, HTTPException, status
from sqlalchemy.orm import Session

from core.db import get_db
from core.realtime import registry
from routes.auth import user_from_token
from security import jwt as jwt_utils

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket, token: Optional[str] = Query(default=None), db: Session = Depends(get_db)
):
    """Order updates channel: admins get every order, users get their own."""
    try:
        user = user_from_token(db, jwt_utils.strip_bearer(token))
    except HTTPException as exc:
        logger.info("Rejected socket connection: %s", exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return
    finally:
        # Return the pooled connection now; the socket may stay open for hours
        db.close()
    user_id, is_admin = user.id, bool(user.is_admin)

    await websocket.accept()
    await registry.connect(websocket, user_id, is_admin)
    await websocket.send_json({"event": "connected", "data": {"userId": user_id, "isAdmin": is_admin}})
    try:
        while True:
            # Clients only listen; anything they send is a keepalive
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(websocket)
