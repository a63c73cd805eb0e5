from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.config import Settings, get_settings
from stockledger.app.db.session import SessionLocal
from stockledger.services.registry import Services, build_services


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_actor(x_actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str:
    # Auth hors périmètre : l'appelant annonce son identité
    if x_actor_id and x_actor_id.strip():
        return x_actor_id.strip()[:64]
    return "system"


def get_services(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Services:
    return build_services(db, settings)
