from __future__ import annotations

from pathlib import Path
from typing import List, Optional
import logging
import types
import bcrypt

# Work around older Windows wheels lacking ``_bcrypt.__about__`` by
# populating it with the package version so Passlib's backend check
# doesn't emit a traceback. This is harmless if the attributes already
# exist.
if not hasattr(bcrypt, "__about__"):
    bcrypt.__about__ = types.SimpleNamespace(__version__=bcrypt.__version__)
if hasattr(bcrypt, "_bcrypt") and not hasattr(bcrypt._bcrypt, "__about__"):
    bcrypt._bcrypt.__about__ = bcrypt.__about__

from passlib.context import CryptContext
from sqlmodel import Field, Session, SQLModel, select
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from .events import Event  # noqa: F401  registers the event table


logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class User(SQLModel, table=True):
    """A login/password-hash row.

    ``login`` is deliberately not unique; verification accepts any row that
    matches.
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    login: str = Field(index=True)
    password: str


def hash_secret(secret: str) -> str:
    """Hash a password using bcrypt with a freshly drawn salt."""

    return pwd_context.hash(secret)


class UserStore:
    """Credential checks against the ``users`` table."""

    def __init__(self, engine):
        self.engine = engine

    def list_for_login(self, login: str) -> List[User]:
        with Session(self.engine) as session:
            return session.exec(select(User).where(User.login == login)).all()

    def create(self, login: str, password: str) -> None:
        with Session(self.engine) as session:
            session.add(User(login=login, password=hash_secret(password)))
            session.commit()

    def verify(self, login: str, password: str) -> bool:
        if not login or not password:
            return False
        for user in self.list_for_login(login):
            if user.password and pwd_context.verify(password, user.password):
                return True
        return False

    def change_password(self, login: str, password: str) -> None:
        # Issued cookies stay valid; there is no session table to revoke.
        with Session(self.engine) as session:
            users = session.exec(select(User).where(User.login == login)).all()
            for user in users:
                user.password = hash_secret(password)
                session.add(user)
            session.commit()


def init_db(engine) -> None:
    """Create tables, verify schema revision and bootstrap the admin login."""

    db_path = Path(engine.url.database)
    first_run = not db_path.exists()

    cfg = Config(str(Path(__file__).resolve().parent.parent / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", str(engine.url))
    if first_run:
        SQLModel.metadata.create_all(engine)
        command.stamp(cfg, "head")

    script = ScriptDirectory.from_config(cfg)
    head = script.get_current_head()
    with engine.connect() as conn:
        try:
            row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
        except OperationalError as exc:
            raise RuntimeError(
                "Database schema is missing Alembic version information. "
                "Run 'uv run alembic upgrade head' before starting the server."
            ) from exc
    if not row or row[0] != head:
        raise RuntimeError(
            "Database schema is out of date. Run 'uv run alembic upgrade head' "
            "before starting the server."
        )


def bootstrap_login(store: UserStore, login: Optional[str], password: Optional[str]) -> None:
    """Create ``login`` with ``password`` unless a row for it already exists."""

    if not login or not password:
        return
    if store.list_for_login(login):
        return
    store.create(login, password)
    logger.info("Created bootstrap login %s", login)
