import pytest

from stockledger.app.db.models.core_types import MovementReason
from stockledger.services.adjustments import StockAdjustmentService
from stockledger.services.errors import InsufficientStockError, NotFoundError, ValidationError
from stockledger.services.ledger import LedgerStore
from stockledger.services.procurement import Receipt

STORE = "store-1"
VARIANT = "variant-A"


def test_initial_stock_then_sale(adjustments, projector):
    adjustments.adjust_stock(STORE, VARIANT, 12, MovementReason.initial_stock)
    mv = adjustments.adjust_stock(STORE, VARIANT, -2, "Sale", note="ticket 881", created_by="pos-3")

    assert mv.reason == MovementReason.sale
    assert mv.note == "ticket 881"
    assert mv.created_by == "pos-3"
    assert projector.get_level(STORE, VARIANT) == 10


def test_default_reason_is_manual_adjustment(adjustments):
    mv = adjustments.adjust_stock(STORE, VARIANT, 1)
    assert mv.reason == MovementReason.manual_adjustment


def test_negative_adjustment_beyond_stock_is_refused(adjustments, projector, ledger):
    adjustments.adjust_stock(STORE, VARIANT, 3, MovementReason.initial_stock)

    with pytest.raises(InsufficientStockError) as exc:
        adjustments.adjust_stock(STORE, VARIANT, -5)

    assert exc.value.available == 3
    assert projector.get_level(STORE, VARIANT) == 3
    assert ledger.count(STORE, VARIANT) == 1


def test_negative_stock_allowed_by_policy(db_session, clock):
    ledger = LedgerStore(db_session, allow_negative=True, clock=clock)
    service = StockAdjustmentService(db_session, ledger)

    service.adjust_stock(STORE, VARIANT, 3, MovementReason.initial_stock)
    service.adjust_stock(STORE, VARIANT, -5, MovementReason.damage)

    assert ledger.projector.get_level(STORE, VARIANT) == -2


def test_zero_adjustment_is_refused(adjustments, ledger):
    with pytest.raises(ValidationError) as exc:
        adjustments.adjust_stock(STORE, VARIANT, 0)
    assert exc.value.field == "change_quantity"
    assert ledger.count() == 0


def test_purchase_receipt_reason_is_reserved(adjustments):
    with pytest.raises(ValidationError) as exc:
        adjustments.adjust_stock(STORE, VARIANT, 5, MovementReason.purchase_receipt)
    assert exc.value.field == "reason"


def test_idempotency_key_replays_original_movement(adjustments, projector, ledger):
    first = adjustments.adjust_stock(STORE, VARIANT, 5, idempotency_key="req-1")
    again = adjustments.adjust_stock(STORE, VARIANT, 5, idempotency_key="req-1")

    assert again.id == first.id
    assert projector.get_level(STORE, VARIANT) == 5
    assert ledger.count() == 1


def test_idempotency_key_with_other_payload_is_refused(adjustments, projector):
    adjustments.adjust_stock(STORE, VARIANT, 5, idempotency_key="req-1")

    with pytest.raises(ValidationError) as exc:
        adjustments.adjust_stock(STORE, VARIANT, 6, idempotency_key="req-1")
    assert exc.value.field == "idempotency_key"
    assert projector.get_level(STORE, VARIANT) == 5


def test_blank_idempotency_key_is_ignored(adjustments, ledger):
    adjustments.adjust_stock(STORE, VARIANT, 1, idempotency_key="  ")
    adjustments.adjust_stock(STORE, VARIANT, 1, idempotency_key="  ")
    assert ledger.count() == 2


def test_reverse_movement(adjustments, projector):
    adjustments.adjust_stock(STORE, VARIANT, 10, MovementReason.initial_stock)
    wrong = adjustments.adjust_stock(STORE, VARIANT, -4, MovementReason.damage)

    fix = adjustments.reverse_movement(wrong.id, created_by="manager")

    assert fix.change_quantity == 4
    assert fix.reason == MovementReason.correction
    assert fix.note == f"Reversal of movement {wrong.id}"
    assert projector.get_level(STORE, VARIANT) == 10
    # l'original reste dans le journal
    assert wrong.change_quantity == -4


def test_reverse_movement_twice_is_a_replay(adjustments, projector):
    mv = adjustments.adjust_stock(STORE, VARIANT, 7, MovementReason.initial_stock)

    first = adjustments.reverse_movement(mv.id)
    second = adjustments.reverse_movement(mv.id)

    assert first.id == second.id
    assert projector.get_level(STORE, VARIANT) == 0


def test_reverse_refused_when_stock_already_consumed(adjustments, projector):
    mv = adjustments.adjust_stock(STORE, VARIANT, 5, MovementReason.initial_stock)
    adjustments.adjust_stock(STORE, VARIANT, -3, MovementReason.sale)

    with pytest.raises(InsufficientStockError):
        adjustments.reverse_movement(mv.id)
    assert projector.get_level(STORE, VARIANT) == 2


def test_reverse_unknown_movement(adjustments):
    with pytest.raises(NotFoundError):
        adjustments.reverse_movement(999)


def test_purchase_receipt_cannot_be_reversed(po_manager, adjustments, ledger):
    po = po_manager.create_purchase_order(
        STORE, "Acme", [{"product_variant_id": VARIANT, "quantity_ordered": 2, "unit_cost_cents": 100}]
    )
    po_manager.receive_items(po.id, [Receipt(po.items[0].id, 2)])
    [receipt] = list(ledger.query(reason=MovementReason.purchase_receipt))

    with pytest.raises(ValidationError):
        adjustments.reverse_movement(receipt.id)


def test_inbound_adjustment_on_negative_level(adjustments, ledger, projector):
    ledger.append(STORE, VARIANT, -5, MovementReason.sale, allow_negative=True)

    adjustments.adjust_stock(STORE, VARIANT, 2, MovementReason.return_)
    assert projector.get_level(STORE, VARIANT) == -3

    with pytest.raises(InsufficientStockError) as exc:
        adjustments.adjust_stock(STORE, VARIANT, -1)
    assert exc.value.available == -3
    assert projector.get_level(STORE, VARIANT) == -3
