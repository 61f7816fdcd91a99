"""Key-value save slots backed by SQLAlchemy."""
import logging

from sqlalchemy import Column, DateTime, String, Text, create_engine, func
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import database_url, normalize_db_url

log = logging.getLogger(__name__)

Base = declarative_base()


class SavedGame(Base):
    __tablename__ = 'saved_game'
    key        = Column(String(100), primary_key=True)
    payload    = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SaveStore:
    def __init__(self, url=None):
        self.url = normalize_db_url(url) if url else database_url()
        self.engine = create_engine(self.url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    def save(self, key, payload):
        with self.Session() as session:
            row = session.get(SavedGame, key)
            if row is None:
                session.add(SavedGame(key=key, payload=payload))
            else:
                row.payload = payload
            session.commit()
        log.info("[store] saved %s (%d bytes)", key, len(payload))

    def load(self, key):
        with self.Session() as session:
            row = session.get(SavedGame, key)
            return row.payload if row else None

    def close(self):
        self.engine.dispose()
