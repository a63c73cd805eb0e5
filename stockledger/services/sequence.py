"""
Numéros monotones via une ligne compteur verrouillée (SELECT ... FOR UPDATE).

Jamais de MAX(x)+1 : la ligne compteur est la seule source du prochain numéro.
L'incrément n'est visible qu'au commit de l'appelant ; un rollback le rend.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import SequenceCounter
from stockledger.app.logging_config import get_logger

logger = get_logger("services.sequence")

PURCHASE_ORDER = "purchase_order"


class SequenceService:
    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, name: str) -> int:
        counter = self._locked_counter(name)

        if counter is None:
            # Première utilisation : un autre writer peut créer la ligne en même temps
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug("sequence_allocated", extra={"sequence_name": name, "value": 1})
                return 1
            except IntegrityError:
                savepoint.rollback()
                logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
                counter = self._locked_counter(name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": counter.current_value})
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()


def format_po_number(prefix: str, value: int) -> str:
    return f"{prefix}{value:06d}"
