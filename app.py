import os

from unipool import create_app
from unipool.websockets import handlers

app = create_app()
socketio = handlers.socketio

# Run the Flask app
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    socketio.run(app, host="0.0.0.0", port=port, debug=False, allow_unsafe_werkzeug=True)
