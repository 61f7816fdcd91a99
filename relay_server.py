from gevent import monkey
monkey.patch_all()

import logging

from uttt.config import Config
from uttt.relay import create_app

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

app, socketio = create_app(Config)

if __name__ == "__main__":
    socketio.run(app, host=Config.RELAY_HOST, port=Config.RELAY_PORT)
