"""
多明细取消/审批中途失败：已提交的明细保留，抛出 PartialFailure，
通过重算产品库存修复
"""
import logging

import pytest

from stockhub.exceptions import PartialFailure, ValidationError, ConflictError, IntegrityViolation
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_in import StockIn
from stockhub.models.stock_out import StockOut
from stockhub.models.inventory_check import InventoryCheck
from stockhub.models.batch import BatchLot
from stockhub.services.inventory_check_service import InventoryCheckService
from stockhub.services.stock_in_service import StockInService
from stockhub.services.stock_out_service import StockOutService
from stockhub.services.stock_service import ProductStockService


@pytest.fixture
def two_line_issue(db, staff, manager, make_product, receive):
    first, second = make_product(), make_product()
    receive(first, 10)
    receive(second, 10)
    stock_out = StockOutService.create('sale', [
        {'product_id': first.id, 'quantity': 4},
        {'product_id': second.id, 'quantity': 3},
    ], staff)
    StockOutService.approve(stock_out.id, manager)
    return stock_out, first, second


def _break_allocation(db, item):
    item.allocations[0].batch_id = 9999
    db.session.commit()


def test_cancel_failure_after_committed_line(db, two_line_issue, manager, caplog):
    stock_out, first, second = two_line_issue
    first_item, second_item = stock_out.items
    _break_allocation(db, second_item)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(PartialFailure) as exc:
            StockOutService.cancel(stock_out.id, manager)

    assert exc.value.succeeded == [first_item.id]
    assert exc.value.failed == second_item.id
    assert isinstance(exc.value.cause, ValidationError)
    assert exc.value.to_dict()['code'] == 500
    assert any('PARTIAL FAILURE' in r.getMessage() and r.levelno == logging.ERROR for r in caplog.records)

    # 第一行已恢复，单据状态不变
    assert stock_out.status == StockOut.STATUS_COMPLETED
    assert first.on_hand == 10
    assert second.on_hand == 7


def test_cancel_failure_on_first_line_changes_nothing(db, two_line_issue, manager):
    stock_out, first, second = two_line_issue
    _break_allocation(db, stock_out.items[0])

    with pytest.raises(ValidationError):
        StockOutService.cancel(stock_out.id, manager)

    assert stock_out.status == StockOut.STATUS_COMPLETED
    assert (first.on_hand, second.on_hand) == (6, 7)


def test_batch_of_other_product_is_rejected(db, two_line_issue, manager):
    stock_out, first, second = two_line_issue
    other_batch = BatchLot.query.filter_by(product_id=second.id).first()
    stock_out.items[0].allocations[0].batch_id = other_batch.id
    db.session.commit()

    with pytest.raises(ValidationError):
        StockOutService.cancel(stock_out.id, manager)
    assert other_batch.remaining_quantity == 7


def test_recompute_repairs_drift_left_by_pending_partial_cancel(db, staff, manager, make_product, receive):
    """pending 单据部分恢复后，批次已回补但单据仍为 pending；重算后库存与批次一致"""
    first, second = make_product(), make_product()
    receive(first, 10)
    receive(second, 10)
    stock_out = StockOutService.create('sale', [
        {'product_id': first.id, 'quantity': 4},
        {'product_id': second.id, 'quantity': 3},
    ], staff)
    _break_allocation(db, stock_out.items[1])

    with pytest.raises(PartialFailure):
        StockOutService.cancel(stock_out.id, manager)
    assert stock_out.status == StockOut.STATUS_PENDING

    first_batch = BatchLot.query.filter_by(product_id=first.id).one()
    assert first_batch.remaining_quantity == 10

    # 手工制造汇总漂移后由重算修复
    first.set_on_hand(2)
    db.session.commit()
    assert [row['product_id'] for row in ProductStockService.verify([first.id])] == [first.id]

    assert ProductStockService.recompute(first.id, manager) == 10
    assert ProductStockService.verify([first.id]) == []


def test_check_approval_reports_partial_failure(db, staff, manager, make_product, receive, monkeypatch):
    first, second = make_product(), make_product()
    receive(first, 10)
    receive(second, 10)
    check = InventoryCheckService.create(staff, [
        {'product_id': first.id, 'actual_quantity': 8},
        {'product_id': second.id, 'actual_quantity': 12},
    ])
    InventoryCheckService.submit(check.id, staff)

    original = InventoryCheckService._adjust_item
    calls = {'n': 0}

    def flaky(check, item, user):
        calls['n'] += 1
        if calls['n'] == 2:
            raise ValidationError("模拟失败")
        return original(check, item, user)

    monkeypatch.setattr(InventoryCheckService, '_adjust_item', staticmethod(flaky))

    with pytest.raises(PartialFailure) as exc:
        InventoryCheckService.approve(check.id, manager)

    assert exc.value.succeeded == [check.items[0].id]
    assert check.status == InventoryCheck.STATUS_SUBMITTED
    assert first.on_hand == 8
    assert second.on_hand == 10


def test_retry_cancel_skips_restored_lines(db, two_line_issue, manager):
    """部分失败后重试取消：已恢复的行不再重复恢复，修复后重试完成取消"""
    stock_out, first, second = two_line_issue
    first_item, second_item = stock_out.items
    second_batch_id = second_item.allocations[0].batch_id
    first_batch = BatchLot.query.filter_by(product_id=first.id).one()
    _break_allocation(db, second_item)

    with pytest.raises(PartialFailure):
        StockOutService.cancel(stock_out.id, manager)
    assert first_item.reversed_at is not None
    assert second_item.reversed_at is None

    # 第一行已恢复，本次没有任何行成功，原样抛出
    with pytest.raises(ValidationError):
        StockOutService.cancel(stock_out.id, manager)
    assert first.on_hand == 10
    assert first_batch.remaining_quantity == 10

    second_item.allocations[0].batch_id = second_batch_id
    db.session.commit()
    StockOutService.cancel(stock_out.id, manager)

    assert stock_out.status == StockOut.STATUS_CANCELLED
    assert (first.on_hand, second.on_hand) == (10, 10)
    assert first_batch.remaining_quantity == 10
    assert ProductStockService.verify() == []


def test_partially_cancelled_pending_issue_only_cancels(db, staff, manager, make_product, receive):
    first, second = make_product(), make_product()
    receive(first, 10)
    receive(second, 10)
    stock_out = StockOutService.create('sale', [
        {'product_id': first.id, 'quantity': 4},
        {'product_id': second.id, 'quantity': 3},
    ], staff)
    _break_allocation(db, stock_out.items[1])

    with pytest.raises(PartialFailure):
        StockOutService.cancel(stock_out.id, manager)

    with pytest.raises(ConflictError):
        StockOutService.approve(stock_out.id, manager)
    with pytest.raises(ConflictError):
        StockOutService.update(stock_out.id, staff, notes='x')
    assert (first.on_hand, second.on_hand) == (10, 10)

    # 删除时只恢复尚未恢复的行，第二行分配已失效
    with pytest.raises(ValidationError):
        StockOutService.delete(stock_out.id, staff)
    assert BatchLot.query.filter_by(product_id=first.id).one().remaining_quantity == 10


def test_stock_in_retry_cancel_skips_reversed_lines(db, supplier, staff, manager, make_product, monkeypatch):
    first, second = make_product(), make_product()
    stock_in = StockInService.create(supplier.id, [
        {'product_id': first.id, 'quantity': 10, 'unit_price': 2.0},
        {'product_id': second.id, 'quantity': 5, 'unit_price': 3.0},
    ], staff)
    StockInService.approve(stock_in.id, manager)

    original = ProductStockService.apply_delta

    def failing(product, delta, move_type, **kwargs):
        if product.id == second.id:
            raise IntegrityViolation("模拟写入失败")
        return original(product, delta, move_type, **kwargs)

    monkeypatch.setattr(ProductStockService, 'apply_delta', staticmethod(failing))

    with pytest.raises(PartialFailure):
        StockInService.cancel(stock_in.id, manager)
    with pytest.raises(IntegrityViolation):
        StockInService.cancel(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_COMPLETED
    assert (first.on_hand, second.on_hand) == (0, 5)

    monkeypatch.undo()
    StockInService.cancel(stock_in.id, manager)

    assert stock_in.status == StockIn.STATUS_CANCELLED
    assert (first.on_hand, second.on_hand) == (0, 0)
    assert BatchLot.query.count() == 0
    assert InventoryLog.query.filter_by(move_type=InventoryLog.TYPE_CANCEL_IN).count() == 2
    assert ProductStockService.verify() == []
