from sqlalchemy import select

from stockledger.app.db.models.core_types import MovementReason
from stockledger.app.db.models.models_v1 import StockLevel
from stockledger.app.db.reconcile import run_reconcile

STORE = "store-1"
VARIANT = "variant-A"


def _drift(db_session, ledger, quantity):
    ledger.append(STORE, VARIANT, 5, MovementReason.initial_stock)
    db_session.flush()
    sl = db_session.execute(select(StockLevel)).scalar_one()
    sl.quantity = quantity
    db_session.commit()


def test_verify_only_clean(session_factory, ledger, db_session, capsys):
    ledger.append(STORE, VARIANT, 5, MovementReason.initial_stock)
    db_session.commit()

    assert run_reconcile(session_factory, verify_only=True) == 0
    assert "OK: 1 level(s) consistent" in capsys.readouterr().out


def test_verify_only_reports_drift(session_factory, ledger, db_session, capsys):
    _drift(db_session, ledger, 50)

    assert run_reconcile(session_factory, verify_only=True) == 1
    assert "DRIFT: 1 level(s)" in capsys.readouterr().err
    assert ledger.projector.get_level(STORE, VARIANT) == 50


def test_rebuild_repairs_and_commits(session_factory, ledger, db_session, capsys):
    _drift(db_session, ledger, 50)

    assert run_reconcile(session_factory) == 0
    assert "repaired=1" in capsys.readouterr().out

    with session_factory() as other:
        level = other.execute(select(StockLevel.quantity)).scalar_one()
    assert level == 5

    # deuxième passage : rien à réparer
    assert run_reconcile(session_factory) == 0
    assert "repaired=0" in capsys.readouterr().out
