"""入库单服务 - 创建 / 修改 / 审批 / 取消 / 删除"""
import logging
from datetime import datetime
from stockhub.extensions import db
from stockhub.exceptions import (
    ValidationError, NotFound, ConflictError, IntegrityViolation, PartialFailure, StockHubException
)
from stockhub.models.biz import Supplier
from stockhub.models.batch import BatchLot
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_in import StockIn, StockInItem
from stockhub.services.cleanup import run_cleanup
from stockhub.services.stock_service import ProductStockService
from stockhub.utils.audit import log_activity
from stockhub.utils.codes import next_code
from stockhub.utils.permissions import ensure_manager
from stockhub.utils.validators import non_negative_number
from stockhub.utils.transaction import commit, transactional

logger = logging.getLogger(__name__)


class StockInService:
    """入库单服务"""

    @staticmethod
    def get(stock_in_id):
        stock_in = db.session.get(StockIn, stock_in_id)
        if stock_in is None or stock_in.is_deleted:
            raise NotFound(f"入库单不存在: {stock_in_id}", payload={'stock_in_id': stock_in_id})
        return stock_in

    @staticmethod
    @transactional
    def create(supplier_id, items_data, user, notes=None, import_date=None):
        """
        创建入库单 (pending)
        :param items_data: [{'product_id': 1, 'quantity': 10, 'unit_price': 5.0,
                             'batch_number': 'B01', 'expiry_date': date(...)}, ...]

        每个明细立即生成一个暂存批次 (released_at 为空)，
        审批前不计入库存，也不参与出库分配。
        """
        supplier = db.session.get(Supplier, supplier_id) if supplier_id else None
        if supplier is None or supplier.is_deleted:
            raise ValidationError("供应商不存在", payload={'supplier_id': supplier_id})
        if not items_data:
            raise ValidationError("入库单至少需要一个明细")

        code = next_code(StockIn, 'stock_in')
        stock_in = StockIn(
            code=code,
            supplier_id=supplier.id,
            notes=notes,
            import_date=import_date or datetime.utcnow(),
            created_by=user.id,
            status=StockIn.STATUS_PENDING
        )
        db.session.add(stock_in)
        StockInService._build_lines(stock_in, supplier, items_data, user)

        stock_in.recalculate_totals()
        commit()

        logger.info("入库单 %s 已创建，%d 个明细，合计 %.2f", code, len(stock_in.items), stock_in.total_amount)
        log_activity(user, 'create_stock_in', stock_in, f"创建入库单 {code}",
                     meta={'total_amount': stock_in.total_amount})
        return stock_in

    @staticmethod
    def _build_lines(stock_in, supplier, items_data, user):
        """校验明细并生成明细行和暂存批次 (不提交)"""
        seen = set()
        for idx, data in enumerate(items_data, start=1):
            quantity = data.get('quantity')
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationError(f"第 {idx} 行数量无效", payload={'line': idx, 'quantity': quantity})
            unit_price = data.get('unit_price')
            unit_price = 0.0 if unit_price is None else non_negative_number(unit_price, idx)

            product = ProductStockService.lock_product(data.get('product_id'))
            batch_number = data.get('batch_number') or f"{stock_in.code}-{idx:02d}"

            key = (product.id, batch_number)
            if key in seen or BatchLot.query.filter_by(product_id=product.id, batch_number=batch_number).first():
                raise ConflictError(f"批次号已存在: {batch_number}",
                                    payload={'product_id': product.id, 'batch_number': batch_number})
            seen.add(key)

            batch = BatchLot(
                batch_number=batch_number,
                product_id=product.id,
                supplier_id=supplier.id,
                manufacturing_date=data.get('manufacturing_date'),
                expiry_date=data.get('expiry_date'),
                received_date=stock_in.import_date,
                initial_quantity=quantity,
                remaining_quantity=quantity,
                cost_price=unit_price,
                created_by=user.id
            )
            stock_in.batches.append(batch)

            stock_in.items.append(StockInItem(
                line_no=idx,
                product_id=product.id,
                quantity=quantity,
                unit_price=unit_price,
                batch_number=batch_number,
                manufacturing_date=data.get('manufacturing_date'),
                expiry_date=data.get('expiry_date'),
                batch=batch
            ))

    @staticmethod
    def _ensure_pending(stock_in, action):
        if stock_in.status != StockIn.STATUS_PENDING:
            raise ConflictError(f"入库单 {stock_in.code} 状态为 {stock_in.status}，不能{action}",
                                payload={'status': stock_in.status})
        if any(item.reversed_at for item in stock_in.items):
            raise ConflictError(f"入库单 {stock_in.code} 已部分取消，只能继续取消",
                                payload={'status': stock_in.status})

    @staticmethod
    @transactional
    def update(stock_in_id, user, supplier_id=None, items_data=None, notes=None, import_date=None):
        """
        修改 pending 入库单 (创建人或主管)
        给出 items_data 时整单明细替换，旧的暂存批次随之删除并按新明细重新生成；
        否则只修改表头，并把供应商和入库时间同步到暂存批次。
        """
        stock_in = StockInService.get(stock_in_id)
        StockInService._ensure_pending(stock_in, '修改')
        if stock_in.created_by != user.id:
            ensure_manager(user, '修改')

        supplier = stock_in.supplier
        if supplier_id is not None:
            supplier = db.session.get(Supplier, supplier_id)
            if supplier is None or supplier.is_deleted:
                raise ValidationError("供应商不存在", payload={'supplier_id': supplier_id})
            stock_in.supplier_id = supplier.id
        if import_date is not None:
            stock_in.import_date = import_date
        if notes is not None:
            stock_in.notes = notes

        if items_data is not None:
            if not items_data:
                raise ValidationError("入库单至少需要一个明细")
            for item in stock_in.items:
                item.batch = None
            stock_in.items.clear()
            stock_in.batches.clear()
            # 旧批次先删除，重新生成的批次号才不会触发唯一约束
            db.session.flush()
            StockInService._build_lines(stock_in, supplier, items_data, user)
        else:
            for batch in stock_in.batches:
                batch.supplier_id = supplier.id
                batch.received_date = stock_in.import_date

        stock_in.recalculate_totals()
        commit()

        logger.info("入库单 %s 已修改 (操作人 %s)", stock_in.code, user.username)
        log_activity(user, 'update_stock_in', stock_in, f"修改入库单 {stock_in.code}",
                     meta={'items_replaced': items_data is not None, 'total_amount': stock_in.total_amount})
        return stock_in

    @staticmethod
    @transactional
    def approve(stock_in_id, user):
        """审批入库：逐行增加库存，放行批次；整个审批在一个工作单元内提交"""
        ensure_manager(user)
        stock_in = StockInService.get(stock_in_id)
        StockInService._ensure_pending(stock_in, '审批')

        now = datetime.utcnow()
        for item in stock_in.items:
            product = ProductStockService.lock_product(item.product_id)
            ProductStockService.apply_delta(
                product, item.quantity, InventoryLog.TYPE_IN,
                code=stock_in.code, user=user, batch_id=item.batch_id,
                remark=f"入库审批 {stock_in.code}"
            )
            if item.batch is not None:
                item.batch.released_at = now

        stock_in.status = StockIn.STATUS_COMPLETED
        stock_in.approved_by = user.id
        stock_in.approved_at = now
        commit()

        logger.info("入库单 %s 已审批 (审批人 %s)", stock_in.code, user.username)
        log_activity(user, 'approve_stock_in', stock_in, f"审批入库单 {stock_in.code}")
        return stock_in

    @staticmethod
    def _contribution(item):
        """本行批次当前计入 on_hand 的数量：只有已放行且 active 的批次计入"""
        batch = item.batch
        if batch is None:
            return item.quantity
        if batch.is_released and batch.status == BatchLot.STATUS_ACTIVE:
            return batch.remaining_quantity
        return 0

    @staticmethod
    def _check_cancellable(stock_in):
        """
        取消前的整体校验，任何一行不通过都不做任何修改：
        - 已审批的单据，冲减后各产品库存不能为负
        - 单据生成的批次不能已被出库使用
        已冲回的行 (上次取消部分失败) 跳过。
        """
        applied = stock_in.status == StockIn.STATUS_COMPLETED
        pending_delta = {}
        for item in stock_in.items:
            if item.reversed_at is not None:
                continue
            batch = item.batch
            if batch is not None and not batch.is_untouched:
                raise ConflictError(
                    f"批次 {batch.batch_number} 已被使用 ({batch.remaining_quantity}/{batch.initial_quantity})，不能取消入库单",
                    payload={'item_id': item.id, 'batch_id': batch.id}
                )
            if applied:
                pending_delta[item.product_id] = (
                    pending_delta.get(item.product_id, 0) + StockInService._contribution(item)
                )

        for product_id, quantity in pending_delta.items():
            product = ProductStockService.lock_product(product_id)
            if product.on_hand - quantity < 0:
                raise IntegrityViolation(
                    f"取消后产品 {product.sku} 库存将为负 ({product.on_hand} - {quantity})",
                    payload={'product_id': product_id, 'on_hand': product.on_hand, 'quantity': quantity}
                )

    @staticmethod
    @transactional
    def cancel(stock_in_id, user):
        """
        取消入库单 (pending / completed → cancelled)

        步骤：
        1. 整体校验 (库存不为负、批次未被使用)，失败不做任何修改
        2. 逐行删除批次；已审批的单据同时冲减库存并写流水，每行单独提交
        3. 执行附属数据清理 (失败只记警告)
        4. 标记为 cancelled

        第 2 步中途失败时已提交的行不回滚，抛出 PartialFailure。
        每行冲回时同时写入 reversed_at，重试取消只处理剩余的行。
        """
        ensure_manager(user, '取消')
        stock_in = StockInService.get(stock_in_id)
        if stock_in.status == StockIn.STATUS_CANCELLED:
            raise ConflictError(f"入库单 {stock_in.code} 已取消", payload={'status': stock_in.status})

        StockInService._check_cancellable(stock_in)

        applied = stock_in.status == StockIn.STATUS_COMPLETED
        code = stock_in.code
        succeeded = []
        for item in [i for i in stock_in.items if i.reversed_at is None]:
            try:
                StockInService._reverse_line(stock_in, item, applied, user)
                commit()
                succeeded.append(item.id)
            except StockHubException as e:
                db.session.rollback()
                if not succeeded:
                    raise
                logger.error("PARTIAL FAILURE 入库单 %s 取消中断于明细 %s: %s (已完成 %s)",
                             code, item.id, e.message, succeeded)
                raise PartialFailure(
                    f"入库单 {code} 部分明细已冲回，明细 {item.id} 失败，请重试取消",
                    succeeded=succeeded, failed=item.id, cause=e
                ) from e

        run_cleanup('stock_in', stock_in)

        stock_in.status = StockIn.STATUS_CANCELLED
        stock_in.cancelled_by = user.id
        stock_in.cancelled_at = datetime.utcnow()
        commit()

        logger.info("入库单 %s 已取消 (操作人 %s)", code, user.username)
        log_activity(user, 'cancel_stock_in', stock_in, f"取消入库单 {code}",
                     meta={'was_completed': applied})
        return stock_in

    @staticmethod
    def _reverse_line(stock_in, item, applied, user):
        """
        冲回一行：删除批次，已审批时按批次当前计入库存的数量冲减 on_hand。
        已过期或损坏的批次早已不计入 on_hand，不再冲减。
        """
        batch = item.batch
        if applied:
            delta = StockInService._contribution(item)
            if delta:
                product = ProductStockService.lock_product(item.product_id)
                ProductStockService.apply_delta(
                    product, -delta, InventoryLog.TYPE_CANCEL_IN,
                    code=stock_in.code, user=user, batch_id=None,
                    remark=f"取消入库 {stock_in.code} (批次 {item.batch_number})"
                )
        if batch is not None:
            item.batch = None
            stock_in.batches.remove(batch)
            db.session.delete(batch)
        item.reversed_at = datetime.utcnow()

    @staticmethod
    @transactional
    def delete(stock_in_id, user):
        """删除入库单：只允许 pending 或 cancelled"""
        stock_in = StockInService.get(stock_in_id)
        if stock_in.status == StockIn.STATUS_COMPLETED:
            raise ConflictError(f"入库单 {stock_in.code} 已审批，不能删除，请先取消",
                                payload={'status': stock_in.status})
        if stock_in.status == StockIn.STATUS_PENDING and stock_in.created_by != user.id:
            ensure_manager(user, '删除')

        code = stock_in.code
        db.session.delete(stock_in)
        commit()
        logger.info("入库单 %s 已删除 (操作人 %s)", code, user.username)
        return code
