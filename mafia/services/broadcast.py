import time

from flask_socketio import join_room, leave_room

from mafia import socketio

NAMESPACE = '/ws'


def room_channel(code):
    return f"room:{code}"


def identity_channel(identity_id):
    return f"user:{identity_id}"


class BroadcastGateway:
    """Fan-out of room-scoped and identity-scoped events.

    Delivery is best effort: whoever is subscribed at emit time gets the event,
    nothing is stored or replayed. Callers emit while holding the room lock, so
    one room's events leave in the order they were issued.
    """

    def __init__(self, sio, namespace=NAMESPACE):
        self.socketio = sio
        self.namespace = namespace

    def broadcast_to_room(self, code, event, payload=None):
        self.socketio.emit(event, payload or {}, to=room_channel(code), namespace=self.namespace)

    def emit_to_identity(self, identity_id, event, payload=None):
        self.socketio.emit(event, payload or {}, to=identity_channel(identity_id), namespace=self.namespace)

    def emit_to_connection(self, sid, event, payload=None):
        self.socketio.emit(event, payload or {}, to=sid, namespace=self.namespace)

    def system_message(self, code, content):
        self.broadcast_to_room(code, 'chat:system', {
            'id': int(time.time() * 1000),
            'content': content,
            'timestamp': time.time(),
            'type': 'system',
        })

    def subscribe(self, sid, code):
        join_room(room_channel(code), sid=sid, namespace=self.namespace)

    def unsubscribe(self, sid, code):
        leave_room(room_channel(code), sid=sid, namespace=self.namespace)

    def attach_identity(self, sid, identity_id):
        join_room(identity_channel(identity_id), sid=sid, namespace=self.namespace)


gateway = BroadcastGateway(socketio)
