from sqlmodel import SQLModel, create_engine, Session
from .settings import settings

# sensor rows are written from paho's network thread
_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)

def init_db():
    SQLModel.metadata.create_all(engine)

def get_session():
    # routes serialise rows after the session is gone, so keep loaded attributes
    return Session(engine, expire_on_commit=False)
