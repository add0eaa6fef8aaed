import json
from queue import Queue, Empty, Full
from threading import Lock
from flask import Response, stream_with_context

# Canal ("auction:<id>") -> colas de los clientes conectados
CHANNELS = {}
_LOCK = Lock()
KEEPALIVE_SECONDS = 15


def publish(channel: str, event: str, data: dict):
    payload = f"event: {event}\n" + f"data: {json.dumps(data, default=str)}\n\n"
    with _LOCK:
        queues = list(CHANNELS.get(channel, []))
    for q in queues:
        try:
            q.put_nowait(payload)
        except Full:
            pass


def subscribers(channel: str) -> int:
    with _LOCK:
        return len(CHANNELS.get(channel, []))


def stream(channel: str, keepalive=KEEPALIVE_SECONDS):
    q = Queue(maxsize=100)
    with _LOCK:
        CHANNELS.setdefault(channel, []).append(q)
    try:
        yield "event: ping\ndata: {}\n\n"
        while True:
            try:
                yield q.get(timeout=keepalive)
            except Empty:
                # comentario SSE para que proxies no corten la conexión
                yield ": keepalive\n\n"
    finally:
        with _LOCK:
            queues = CHANNELS.get(channel, [])
            if q in queues:
                queues.remove(q)
            if not queues:
                CHANNELS.pop(channel, None)


def sse_response(generator):
    return Response(
        stream_with_context(generator),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
