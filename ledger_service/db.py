from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from common.settings import settings

def database_url() -> str:
    if settings.database_url:
        return settings.database_url
    return f"mysql+pymysql://{settings.mysql_user}:{settings.mysql_password}@{settings.mysql_host}:{settings.mysql_port}/{settings.mysql_db}"

def make_engine(url: str = None, **kwargs) -> Engine:
    """Engine whose transactions all run serializably.

    SQLite has no SERIALIZABLE level to ask for, so every transaction there
    takes the database write lock up front with BEGIN IMMEDIATE.
    """
    url = url or database_url()
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30}, **kwargs)
        _begin_immediate(engine)
        return engine
    return create_engine(url, pool_pre_ping=True, isolation_level="SERIALIZABLE", **kwargs)

def _begin_immediate(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
