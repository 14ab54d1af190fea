from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from fastapi import Request

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp with microseconds, as stored in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_url(url: str) -> str:
    # Render/Heroku hand out 'postgres://', SQLAlchemy wants 'postgresql://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Explicitly constructed store handle.

    Nothing is opened until ``init()``; ``dispose()`` releases the pool.
    The FastAPI app owns one instance on ``app.state.database``.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_url(url)
        self.echo = echo
        self.engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def init(self) -> None:
        if self.engine is not None:
            return

        self.engine = create_engine(
            self.url,
            echo=self.echo,
            # "check_same_thread" is ONLY for SQLite
            connect_args={"check_same_thread": False} if self.is_sqlite else {},
        )
        if self.is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

        # register every table on Base.metadata before create_all
        from classifieds.models import chat, like, listing, user  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database.init() must be called before opening sessions")
        return self._session_factory()

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._session_factory = None


def get_db(request: Request):
    db: Session = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
