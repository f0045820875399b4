from datetime import datetime, date, timedelta

import pytest

from stockhub.exceptions import ValidationError, ConflictError, IntegrityViolation, PermissionDenied, NotFound
from stockhub.models.batch import BatchLot
from stockhub.models.biz import Supplier
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_in import StockIn
from stockhub.services.allocation import allocate
from stockhub.services.batch_service import BatchService
from stockhub.services.stock_in_service import StockInService
from stockhub.services.stock_out_service import StockOutService
from stockhub.services.stock_service import ProductStockService


def _create(supplier, staff, product, quantity=20, **line):
    data = {'product_id': product.id, 'quantity': quantity, 'unit_price': 4.5}
    data.update(line)
    return StockInService.create(supplier.id, [data], staff)


def test_create_is_pending_and_stages_batches(db, supplier, staff, product):
    stock_in = _create(supplier, staff, product, 20, batch_number='LOT-A')

    assert stock_in.status == StockIn.STATUS_PENDING
    assert stock_in.code == f"PN{datetime.now():%Y%m}0001"
    assert stock_in.total_amount == 90.0
    batch = stock_in.items[0].batch
    assert batch.batch_number == 'LOT-A'
    assert batch.initial_quantity == batch.remaining_quantity == 20
    assert not batch.is_released
    assert product.on_hand == 0


def test_codes_increment_within_month(db, supplier, staff, product):
    first = _create(supplier, staff, product)
    second = _create(supplier, staff, product)

    assert int(second.code[-4:]) == int(first.code[-4:]) + 1


def test_missing_batch_number_is_generated_from_code(db, supplier, staff, product):
    stock_in = _create(supplier, staff, product)

    assert stock_in.items[0].batch_number == f"{stock_in.code}-01"


def test_create_rejects_unknown_supplier_or_product(db, supplier, staff, product):
    with pytest.raises(ValidationError):
        StockInService.create(9999, [{'product_id': product.id, 'quantity': 1}], staff)
    with pytest.raises(NotFound):
        StockInService.create(supplier.id, [{'product_id': 9999, 'quantity': 1}], staff)
    with pytest.raises(ValidationError):
        StockInService.create(supplier.id, [{'product_id': product.id, 'quantity': 0}], staff)

    assert StockIn.query.count() == 0
    assert BatchLot.query.count() == 0


def test_duplicate_batch_number_conflicts(db, supplier, staff, product):
    _create(supplier, staff, product, batch_number='LOT-A')

    with pytest.raises(ConflictError):
        _create(supplier, staff, product, batch_number='LOT-A')
    assert StockIn.query.count() == 1


def test_approve_adds_stock_and_releases_batches(db, supplier, staff, manager, product):
    stock_in = _create(supplier, staff, product, 20)

    StockInService.approve(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_COMPLETED
    assert stock_in.approved_by == manager.id
    assert product.on_hand == 20
    assert stock_in.items[0].batch.is_released

    log = InventoryLog.query.filter_by(transaction_code=stock_in.code).one()
    assert log.move_type == InventoryLog.TYPE_IN
    assert (log.balance_before, log.qty_change, log.balance_after) == (0, 20, 20)


def test_approve_requires_manager(db, supplier, staff, product):
    stock_in = _create(supplier, staff, product)

    with pytest.raises(PermissionDenied):
        StockInService.approve(stock_in.id, staff)
    assert stock_in.status == StockIn.STATUS_PENDING


def test_approve_twice_conflicts(db, supplier, staff, manager, product):
    stock_in = _create(supplier, staff, product, 20)
    StockInService.approve(stock_in.id, manager)

    with pytest.raises(ConflictError):
        StockInService.approve(stock_in.id, manager)
    assert product.on_hand == 20


def test_cancel_pending_removes_staged_batches_only(db, supplier, staff, manager, product, receive):
    receive(product, 5)
    stock_in = _create(supplier, staff, product, 20)

    StockInService.cancel(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_CANCELLED
    assert stock_in.cancelled_by == manager.id
    assert product.on_hand == 5
    assert BatchLot.query.filter_by(stock_in_id=stock_in.id).count() == 0


def test_cancel_completed_before_issuance(db, supplier, staff, manager, product, receive):
    """入库 20 后未出库即取消：库存回退 20，批次删除"""
    receive(product, 10)
    stock_in = _create(supplier, staff, product, 20)
    StockInService.approve(stock_in.id, manager)
    batch_id = stock_in.items[0].batch_id
    assert product.on_hand == 30

    StockInService.cancel(stock_in.id, manager)

    assert product.on_hand == 10
    assert db.session.get(BatchLot, batch_id) is None
    log = InventoryLog.query.filter_by(transaction_code=stock_in.code,
                                       move_type=InventoryLog.TYPE_CANCEL_IN).one()
    assert (log.balance_before, log.balance_after) == (30, 10)


def test_cancel_rejected_when_batch_partially_issued(db, supplier, staff, manager, product):
    """批次已出库 8 (剩余 12/20) 时取消入库单返回冲突，数据不变"""
    stock_in = _create(supplier, staff, product, 20)
    StockInService.approve(stock_in.id, manager)
    StockOutService.create('sale', [{'product_id': product.id, 'quantity': 8}], staff)
    batch = stock_in.items[0].batch
    assert batch.remaining_quantity == 12

    with pytest.raises(ConflictError):
        StockInService.cancel(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_COMPLETED
    assert product.on_hand == 20
    assert db.session.get(BatchLot, batch.id).remaining_quantity == 12


def test_cancel_rejected_when_stock_would_go_negative(db, supplier, staff, manager, product):
    stock_in = _create(supplier, staff, product, 20)
    StockInService.approve(stock_in.id, manager)
    product.set_on_hand(5)
    db.session.commit()

    with pytest.raises(IntegrityViolation):
        StockInService.cancel(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_COMPLETED
    assert product.on_hand == 5
    assert stock_in.items[0].batch is not None


def test_cancel_twice_conflicts(db, supplier, staff, manager, product):
    stock_in = _create(supplier, staff, product)
    StockInService.cancel(stock_in.id, manager)

    with pytest.raises(ConflictError):
        StockInService.cancel(stock_in.id, manager)


def test_delete_only_pending_or_cancelled(db, supplier, staff, manager, product):
    pending = _create(supplier, staff, product)
    StockInService.delete(pending.id, staff)
    assert StockIn.query.count() == 0
    assert BatchLot.query.count() == 0

    completed = _create(supplier, staff, product)
    StockInService.approve(completed.id, manager)
    with pytest.raises(ConflictError):
        StockInService.delete(completed.id, manager)

    StockInService.cancel(completed.id, manager)
    StockInService.delete(completed.id, manager)
    assert StockIn.query.count() == 0


def test_staged_batches_are_not_allocatable(db, supplier, staff, product):
    _create(supplier, staff, product, 20)

    plan = allocate(product.id, 5)

    assert plan.total_quantity == 0
    db.session.rollback()


def test_non_numeric_unit_price_is_rejected(db, supplier, staff, product):
    for bad in ('abc', True, -1):
        with pytest.raises(ValidationError):
            _create(supplier, staff, product, unit_price=bad)

    assert StockIn.query.count() == 0
    assert BatchLot.query.count() == 0


def test_cancel_after_expiry_sweep_keeps_on_hand(db, supplier, staff, manager, product, receive):
    """30 (无效期) + 20 (两天后到期)；过期扫描后库存 30，取消过期批次的入库单不再冲减"""
    receive(product, 30, day=1)
    expiring = receive(product, 20, day=2, expiry=date.today() + timedelta(days=2))
    BatchService.expire_due(today=date.today() + timedelta(days=5))
    assert product.on_hand == 30

    StockInService.cancel(expiring.stock_in_id, manager)

    assert product.on_hand == 30
    assert ProductStockService.verify() == []
    assert InventoryLog.query.filter_by(move_type=InventoryLog.TYPE_CANCEL_IN).count() == 0


def test_update_pending_replaces_lines_and_restages_batches(db, supplier, staff, manager, make_product, product):
    other = make_product()
    stock_in = _create(supplier, staff, product, 20, batch_number='LOT-A')

    StockInService.update(stock_in.id, staff, notes='数量更正', items_data=[
        {'product_id': product.id, 'quantity': 12, 'unit_price': 5.0, 'batch_number': 'LOT-A'},
        {'product_id': other.id, 'quantity': 3},
    ])

    assert stock_in.notes == '数量更正'
    assert [(i.product_id, i.quantity) for i in stock_in.items] == [(product.id, 12), (other.id, 3)]
    assert stock_in.total_amount == 60.0
    assert BatchLot.query.count() == 2
    lot = BatchLot.query.filter_by(batch_number='LOT-A').one()
    assert lot.initial_quantity == lot.remaining_quantity == 12
    assert not lot.is_released
    assert product.on_hand == 0

    StockInService.approve(stock_in.id, manager)
    assert (product.on_hand, other.on_hand) == (12, 3)
    assert ProductStockService.verify() == []


def test_update_header_moves_staged_batches(db, supplier, staff, product):
    other_supplier = Supplier(code='SUP02', name='华北冷链')
    db.session.add(other_supplier)
    db.session.commit()
    stock_in = _create(supplier, staff, product, 20)

    StockInService.update(stock_in.id, staff, supplier_id=other_supplier.id, import_date=datetime(2024, 2, 1))

    batch = stock_in.items[0].batch
    assert stock_in.supplier_id == other_supplier.id
    assert batch.supplier_id == other_supplier.id
    assert batch.received_date == datetime(2024, 2, 1)
    assert stock_in.items[0].quantity == 20


def test_update_invalid_lines_leave_document_unchanged(db, supplier, staff, product):
    stock_in = _create(supplier, staff, product, 20, batch_number='LOT-A')

    with pytest.raises(ValidationError):
        StockInService.update(stock_in.id, staff, items_data=[{'product_id': product.id, 'quantity': 0}])
    with pytest.raises(ValidationError):
        StockInService.update(stock_in.id, staff, supplier_id=9999)

    assert [i.quantity for i in stock_in.items] == [20]
    assert BatchLot.query.filter_by(batch_number='LOT-A').one().initial_quantity == 20


def test_update_only_pending_and_by_creator_or_manager(db, supplier, staff, manager, product):
    own = StockInService.create(supplier.id, [{'product_id': product.id, 'quantity': 5}], manager)
    with pytest.raises(PermissionDenied):
        StockInService.update(own.id, staff, notes='x')

    StockInService.approve(own.id, manager)
    with pytest.raises(ConflictError):
        StockInService.update(own.id, manager, notes='x')
    assert own.notes is None
