from mafia import create_app, socketio
from mafia.services.games.scheduler import start_room_sweeper

app = create_app()

if __name__ == '__main__':
    start_room_sweeper(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
