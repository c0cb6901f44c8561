from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_dictionary_engine(url: str) -> Engine:
    """辞書テーブル用の Engine を生成する。"""

    kwargs: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            # インメモリ DB は接続ごとに別物になるため 1 接続を共有する
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """トランザクションを伴うセッションを提供する。"""

    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(engine: Engine) -> None:
    """必要なテーブルを作成する。"""

    from . import tables  # noqa: WPS433  遅延インポートで循環を避ける

    tables.Base.metadata.create_all(bind=engine)


__all__ = ["create_dictionary_engine", "build_session_factory", "session_scope", "init_database"]
