from app import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Socket.IO server runs the presence channel and the game timers
    socketio.run(app, debug=True)
