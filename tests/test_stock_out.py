from datetime import date, timedelta

import pytest
from sqlalchemy import update

from stockhub.exceptions import ValidationError, ConflictError, PermissionDenied
from stockhub.models.batch import BatchLot
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_out import StockOut, StockOutAllocation
from stockhub.services.batch_service import BatchService
from stockhub.services.stock_out_service import StockOutService
from stockhub.services.stock_service import ProductStockService


def _issue(staff, product, quantity, unit_price=None, issue_type='sale'):
    line = {'product_id': product.id, 'quantity': quantity}
    if unit_price is not None:
        line['unit_price'] = unit_price
    return StockOutService.create(issue_type, [line], staff)


def test_fifo_issue_and_approval(db, staff, manager, product, receive):
    """B1 (第1天, 5) + B2 (第2天, 10)；出库 8 → B1 取 5 耗尽，B2 取 3 剩 7；审批后库存减 8"""
    b1 = receive(product, 5, cost=10.0, day=1)
    b2 = receive(product, 10, cost=12.0, day=2)
    assert product.on_hand == 15

    stock_out = _issue(staff, product, 8)
    plan = [(a.batch_id, a.quantity) for a in stock_out.items[0].allocations]

    assert plan == [(b1.id, 5), (b2.id, 3)]
    assert b1.remaining_quantity == 0 and b1.status == BatchLot.STATUS_DEPLETED
    assert b2.remaining_quantity == 7
    assert product.on_hand == 15

    StockOutService.approve(stock_out.id, manager)

    assert stock_out.status == StockOut.STATUS_COMPLETED
    assert product.on_hand == 7
    assert ProductStockService.verify() == []


def test_missing_unit_price_uses_weighted_average_cost(db, staff, product, receive):
    receive(product, 5, cost=10.0, day=1)
    receive(product, 10, cost=13.0, day=2)

    stock_out = _issue(staff, product, 8)
    item = stock_out.items[0]

    assert item.unit_price == 11.12
    assert stock_out.total_amount == round(8 * 11.12, 2)


def test_explicit_unit_price_is_kept(db, staff, product, receive):
    receive(product, 10, cost=10.0)

    stock_out = _issue(staff, product, 4, unit_price=25.0)

    assert stock_out.items[0].unit_price == 25.0
    assert stock_out.total_amount == 100.0


def test_insufficient_stock_is_rejected_without_changes(db, staff, product, receive):
    batch = receive(product, 5)

    with pytest.raises(ConflictError):
        _issue(staff, product, 6)

    assert StockOut.query.count() == 0
    assert batch.remaining_quantity == 5


def test_quantity_summed_across_lines_of_same_product(db, staff, product, receive):
    receive(product, 5)

    with pytest.raises(ConflictError):
        StockOutService.create('sale', [
            {'product_id': product.id, 'quantity': 3},
            {'product_id': product.id, 'quantity': 3},
        ], staff)
    assert StockOut.query.count() == 0


def test_under_allocation_is_rejected(db, staff, product, receive):
    """on_hand 与批次不一致时，分配不足整单回滚"""
    batch = receive(product, 5)
    product.set_on_hand(20)
    db.session.commit()

    with pytest.raises(ConflictError):
        _issue(staff, product, 8)

    assert StockOut.query.count() == 0
    assert StockOutAllocation.query.count() == 0
    assert db.session.get(BatchLot, batch.id).remaining_quantity == 5


def test_invalid_issue_type_or_quantity(db, staff, product, receive):
    receive(product, 5)

    with pytest.raises(ValidationError):
        _issue(staff, product, 1, issue_type='gift')
    with pytest.raises(ValidationError):
        _issue(staff, product, -1)


def test_second_approval_conflicts(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 4)

    StockOutService.approve(stock_out.id, manager)
    with pytest.raises(ConflictError):
        StockOutService.approve(stock_out.id, manager)

    assert product.on_hand == 6
    assert InventoryLog.query.filter_by(move_type=InventoryLog.TYPE_OUT).count() == 1


def test_approve_rechecks_on_hand(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 8)
    product.set_on_hand(3)
    db.session.commit()

    with pytest.raises(ConflictError):
        StockOutService.approve(stock_out.id, manager)
    assert stock_out.status == StockOut.STATUS_PENDING
    assert product.on_hand == 3


def test_stale_document_version_conflicts(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 4)
    assert stock_out.version == 1

    # 模拟另一个请求已修改该单据
    db.session.execute(
        update(StockOut).where(StockOut.id == stock_out.id).values(version=StockOut.version + 1),
        execution_options={'synchronize_session': False}
    )

    with pytest.raises(ConflictError):
        StockOutService.approve(stock_out.id, manager)

    assert product.on_hand == 10
    assert stock_out.status == StockOut.STATUS_PENDING


def test_approve_requires_manager(db, staff, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 4)

    with pytest.raises(PermissionDenied):
        StockOutService.approve(stock_out.id, staff)


def test_cancel_pending_round_trip(db, staff, manager, product, receive):
    b1 = receive(product, 5, day=1)
    b2 = receive(product, 10, day=2)
    before = (product.on_hand, b1.remaining_quantity, b2.remaining_quantity)

    stock_out = _issue(staff, product, 8)
    StockOutService.cancel(stock_out.id, manager)

    assert stock_out.status == StockOut.STATUS_CANCELLED
    assert (product.on_hand, b1.remaining_quantity, b2.remaining_quantity) == before
    assert b1.status == BatchLot.STATUS_ACTIVE


def test_cancel_completed_restores_on_hand(db, staff, manager, product, receive):
    batch = receive(product, 10)
    stock_out = _issue(staff, product, 10)
    StockOutService.approve(stock_out.id, manager)
    assert product.on_hand == 0
    assert product.status == product.STATUS_OUT_OF_STOCK

    StockOutService.cancel(stock_out.id, manager)

    assert product.on_hand == 10
    assert product.status == product.STATUS_ACTIVE
    assert batch.remaining_quantity == 10
    assert batch.status == BatchLot.STATUS_ACTIVE
    log = InventoryLog.query.filter_by(move_type=InventoryLog.TYPE_CANCEL_OUT).one()
    assert (log.balance_before, log.balance_after) == (0, 10)


def test_cancel_twice_conflicts(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 2)
    StockOutService.cancel(stock_out.id, manager)

    with pytest.raises(ConflictError):
        StockOutService.cancel(stock_out.id, manager)
    assert product.on_hand == 10


def test_delete_pending_restores_allocations(db, staff, product, receive):
    batch = receive(product, 10)
    stock_out = _issue(staff, product, 6)
    assert batch.remaining_quantity == 4

    StockOutService.delete(stock_out.id, staff)

    assert StockOut.query.count() == 0
    assert StockOutAllocation.query.count() == 0
    assert batch.remaining_quantity == 10


def test_delete_completed_conflicts(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 6)
    StockOutService.approve(stock_out.id, manager)

    with pytest.raises(ConflictError):
        StockOutService.delete(stock_out.id, manager)

    StockOutService.cancel(stock_out.id, manager)
    StockOutService.delete(stock_out.id, manager)
    assert StockOut.query.count() == 0
    assert product.on_hand == 10


def test_non_numeric_unit_price_is_rejected(db, staff, product, receive):
    batch = receive(product, 10)

    for bad in ('abc', False, -0.5):
        with pytest.raises(ValidationError):
            _issue(staff, product, 2, unit_price=bad)

    assert StockOut.query.count() == 0
    assert batch.remaining_quantity == 10


def test_cancel_into_expired_batch_does_not_restore_on_hand(db, staff, manager, product, receive):
    """出库 4 审批后批次过期 (库存归零)；取消出库只回补批次，不回补库存"""
    batch = receive(product, 10, expiry=date.today() + timedelta(days=2))
    stock_out = _issue(staff, product, 4)
    StockOutService.approve(stock_out.id, manager)
    BatchService.expire_due(today=date.today() + timedelta(days=5))
    assert product.on_hand == 0

    StockOutService.cancel(stock_out.id, manager)

    assert stock_out.status == StockOut.STATUS_CANCELLED
    assert batch.remaining_quantity == 10
    assert batch.status == BatchLot.STATUS_EXPIRED
    assert product.on_hand == 0
    assert ProductStockService.verify() == []


def test_update_pending_restores_and_reallocates(db, staff, manager, product, receive):
    b1 = receive(product, 5, cost=10.0, day=1)
    b2 = receive(product, 10, cost=13.0, day=2)
    stock_out = _issue(staff, product, 8)
    assert (b1.remaining_quantity, b2.remaining_quantity) == (0, 7)

    StockOutService.update(stock_out.id, staff, items_data=[{'product_id': product.id, 'quantity': 3}])

    item = stock_out.items[0]
    assert [(a.batch_id, a.quantity) for a in item.allocations] == [(b1.id, 3)]
    assert item.unit_price == 10.0
    assert stock_out.total_amount == 30.0
    assert (b1.remaining_quantity, b2.remaining_quantity) == (2, 10)
    assert b1.status == BatchLot.STATUS_ACTIVE
    assert StockOutAllocation.query.count() == 1

    StockOutService.approve(stock_out.id, manager)
    assert product.on_hand == 12
    assert ProductStockService.verify() == []


def test_update_that_cannot_be_allocated_keeps_original_plan(db, staff, product, receive):
    b1 = receive(product, 5, day=1)
    b2 = receive(product, 10, day=2)
    stock_out = _issue(staff, product, 8)

    with pytest.raises(ConflictError):
        StockOutService.update(stock_out.id, staff, items_data=[{'product_id': product.id, 'quantity': 50}])
    with pytest.raises(ValidationError):
        StockOutService.update(stock_out.id, staff, items_data=[{'product_id': product.id, 'quantity': 1,
                                                                 'unit_price': 'free'}])

    assert [a.quantity for a in stock_out.items[0].allocations] == [5, 3]
    assert (b1.remaining_quantity, b2.remaining_quantity) == (0, 7)


def test_update_header_only_pending_and_permitted(db, staff, manager, product, receive):
    receive(product, 10)
    stock_out = _issue(staff, product, 4)

    StockOutService.update(stock_out.id, staff, issue_type='internal_use', notes='部门领用')
    assert (stock_out.issue_type, stock_out.notes) == ('internal_use', '部门领用')
    assert [a.quantity for a in stock_out.items[0].allocations] == [4]

    with pytest.raises(ValidationError):
        StockOutService.update(stock_out.id, staff, issue_type='gift')

    others = StockOutService.create('sale', [{'product_id': product.id, 'quantity': 1}], manager)
    with pytest.raises(PermissionDenied):
        StockOutService.update(others.id, staff, notes='x')

    StockOutService.approve(stock_out.id, manager)
    with pytest.raises(ConflictError):
        StockOutService.update(stock_out.id, manager, notes='x')
