from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base


def init_db(database_url: str, *, reset: bool = False, echo: bool = False) -> Session:
    engine: Engine = create_engine(database_url, echo=echo)

    if reset:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    return sessionmaker(engine)()
