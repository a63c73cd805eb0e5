"""
Réconciliation périodique projection <-> ledger.

    python -m stockledger.app.db.reconcile               # rebuild (répare + log)
    python -m stockledger.app.db.reconcile --verify-only  # constate, exit 1 si dérive

Idempotent, sûr pendant les écritures : seule la projection est réécrite.
"""

from __future__ import annotations

import argparse
import sys

from sqlalchemy.orm import sessionmaker

from stockledger.app.config import get_settings
from stockledger.app.db.immutability import register_guards
from stockledger.app.logging_config import configure_logging, get_logger
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.errors import ConsistencyError
from stockledger.services.projector import StockLevelProjector

logger = get_logger("db.reconcile")


def run_reconcile(
    session_factory: sessionmaker,
    *,
    store_id: str | None = None,
    product_variant_id: str | None = None,
    verify_only: bool = False,
    attempts: int = 3,
) -> int:
    """Retourne le code de sortie : 0 propre / réparé, 1 dérive constatée (verify)."""
    db = session_factory()
    try:
        projector = StockLevelProjector(db)
        if verify_only:
            try:
                checked = projector.verify(store_id, product_variant_id)
            except ConsistencyError as exc:
                print(f"DRIFT: {len(exc.mismatches)} level(s) diverge from the ledger", file=sys.stderr)
                return 1
            print(f"OK: {checked} level(s) consistent")
            return 0

        report = run_in_transaction(
            db,
            lambda: projector.rebuild(store_id, product_variant_id),
            attempts=attempts,
        )
        print(f"REBUILD OK: checked={report.checked} repaired={len(report.repaired)}")
        return 0
    finally:
        db.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile stock levels with the movement ledger")
    parser.add_argument("--store-id")
    parser.add_argument("--product-variant-id")
    parser.add_argument("--verify-only", action="store_true")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(level=settings.log_level, json_lines=settings.log_json)
    register_guards()

    from stockledger.app.db.session import SessionLocal

    return run_reconcile(
        SessionLocal,
        store_id=args.store_id,
        product_variant_id=args.product_variant_id,
        verify_only=args.verify_only,
        attempts=settings.write_retry_attempts,
    )


if __name__ == "__main__":
    sys.exit(main())
