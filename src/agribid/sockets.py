from flask import request
from flask_socketio import Namespace, emit, join_room, leave_room
from flask_jwt_extended import decode_token
from jwt.exceptions import PyJWTError
from typing import Optional

# sid -> user_id, para cambiar de sala al refrescar el token
_SID_TO_UID = {}


def _extract_uid_from_token(token: Optional[str]) -> Optional[int]:
    if not token:
        return None
    try:
        sub = decode_token(token).get("sub")
        return int(sub) if sub is not None else None
    except (PyJWTError, ValueError, TypeError):
        return None


class AuctionNamespace(Namespace):
    """Salas: ``user:<id>`` (avisos personales) y ``auction:<id>`` (pujas)."""

    def on_connect(self, auth=None):
        token = (auth or {}).get("token") if isinstance(auth, dict) else None
        token = token or request.args.get("token")
        uid = _extract_uid_from_token(token)
        if uid:
            join_room(f"user:{uid}")
            _SID_TO_UID[request.sid] = uid
        emit("connected", {"ok": True, "userId": uid}, to=request.sid)

    def on_disconnect(self, reason=None):
        _SID_TO_UID.pop(request.sid, None)

    def on_auth_refresh(self, data):
        new_uid = _extract_uid_from_token((data or {}).get("token"))
        old_uid = _SID_TO_UID.get(request.sid)
        if old_uid and old_uid != new_uid:
            leave_room(f"user:{old_uid}")
        if new_uid:
            join_room(f"user:{new_uid}")
            _SID_TO_UID[request.sid] = new_uid
        emit("auth_refreshed", {"userId": new_uid}, to=request.sid)

    def on_subscribe_auction(self, data):
        aid = (data or {}).get("auctionId")
        if not aid:
            return
        join_room(f"auction:{aid}")
        emit("subscribed", {"auctionId": aid}, to=request.sid)

    def on_unsubscribe_auction(self, data):
        aid = (data or {}).get("auctionId")
        if not aid:
            return
        leave_room(f"auction:{aid}")
        emit("unsubscribed", {"auctionId": aid}, to=request.sid)


def register_socketio(socketio):
    socketio.on_namespace(AuctionNamespace("/rt"))
