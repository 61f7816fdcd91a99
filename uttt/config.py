import os


def database_url():
    """Resolve the save database URL.

    DATABASE_URL wins when set. Otherwise a SQLite file in an 'instance'
    folder next to the package is used.
    """
    url = os.environ.get('DATABASE_URL')
    if url:
        return normalize_db_url(url)
    data_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'instance')
    os.makedirs(data_dir, exist_ok=True)
    return f'sqlite:///{os.path.join(data_dir, "saves.sqlite3")}'


def normalize_db_url(url):
    # SQLAlchemy 1.4+ requires postgresql:// not postgres://
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql://', 1)
    return url


class Config:
    SECRET_KEY          = os.environ.get('SECRET_KEY', 'a_secret_key')
    RELAY_URL           = os.environ.get('UTTT_RELAY_URL', 'http://localhost:5000')
    RELAY_HOST          = os.environ.get('UTTT_RELAY_HOST', '0.0.0.0')
    RELAY_PORT          = int(os.environ.get('PORT', 5000))
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'gevent')
    AI_MOVE_DELAY       = float(os.environ.get('AI_MOVE_DELAY', 0.7))   # seconds of "thinking"
    SAVE_KEY            = 'ultimate-t3-save-v1'
