"""出库单服务 - 创建 (FIFO 分配) / 修改 / 审批 / 取消 / 删除"""
import logging
from datetime import datetime
from stockhub.extensions import db
from stockhub.exceptions import ValidationError, NotFound, ConflictError, PartialFailure, StockHubException
from stockhub.models.batch import BatchLot
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_out import StockOut, StockOutItem, StockOutAllocation
from stockhub.services import allocation
from stockhub.services.cleanup import run_cleanup
from stockhub.services.stock_service import ProductStockService
from stockhub.utils.audit import log_activity
from stockhub.utils.codes import next_code
from stockhub.utils.permissions import ensure_manager
from stockhub.utils.validators import non_negative_number
from stockhub.utils.transaction import commit, transactional

logger = logging.getLogger(__name__)


class StockOutService:
    """出库单服务"""

    @staticmethod
    def get(stock_out_id):
        stock_out = db.session.get(StockOut, stock_out_id)
        if stock_out is None or stock_out.is_deleted:
            raise NotFound(f"出库单不存在: {stock_out_id}", payload={'stock_out_id': stock_out_id})
        return stock_out

    @staticmethod
    def _validate_lines(items_data):
        if not items_data:
            raise ValidationError("出库单至少需要一个明细")
        requested = {}
        for idx, data in enumerate(items_data, start=1):
            quantity = data.get('quantity')
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationError(f"第 {idx} 行数量无效", payload={'line': idx, 'quantity': quantity})
            if data.get('unit_price') is not None:
                non_negative_number(data['unit_price'], idx)
            product_id = data.get('product_id')
            requested[product_id] = requested.get(product_id, 0) + quantity
        return requested

    @staticmethod
    @transactional
    def create(issue_type, items_data, user, notes=None, issue_date=None):
        """
        创建出库单 (pending)
        :param items_data: [{'product_id': 1, 'quantity': 8, 'unit_price': None}, ...]

        1. 各产品 on_hand 必须满足本单请求总量
        2. 按 FIFO 从批次扣减并记录分配计划 (批次在此时扣减，审批时不再变动)
        3. 未给单价时使用分配计划的加权平均成本
        分配不足时整单回滚，不保存任何数据。
        """
        if issue_type not in StockOut.TYPES:
            raise ValidationError(f"出库类型无效: {issue_type}", payload={'issue_type': issue_type})
        requested = StockOutService._validate_lines(items_data)
        StockOutService._check_on_hand(requested)

        code = next_code(StockOut, 'stock_out')
        stock_out = StockOut(
            code=code,
            issue_type=issue_type,
            notes=notes,
            issue_date=issue_date or datetime.utcnow(),
            created_by=user.id,
            status=StockOut.STATUS_PENDING
        )
        db.session.add(stock_out)
        StockOutService._build_lines(stock_out, items_data)

        stock_out.recalculate_totals()
        commit()

        logger.info("出库单 %s 已创建 (%s)，%d 个明细", code, issue_type, len(stock_out.items))
        log_activity(user, 'create_stock_out', stock_out, f"创建出库单 {code}",
                     meta={'issue_type': issue_type, 'total_amount': stock_out.total_amount})
        return stock_out

    @staticmethod
    def _check_on_hand(requested):
        for product_id, quantity in requested.items():
            product = ProductStockService.lock_product(product_id)
            if product.on_hand < quantity:
                raise ConflictError(
                    f"产品 {product.sku} 库存不足 (当前 {product.on_hand}，需要 {quantity})",
                    payload={'product_id': product.id, 'on_hand': product.on_hand, 'requested': quantity}
                )

    @staticmethod
    def _build_lines(stock_out, items_data):
        """按 FIFO 分配并生成明细行 (不提交)；任一行分配不足抛出 ConflictError"""
        for idx, data in enumerate(items_data, start=1):
            plan = allocation.allocate(data['product_id'], data['quantity'])
            if not plan.is_satisfied:
                raise ConflictError(
                    f"第 {idx} 行批次可用数量不足 (需要 {plan.requested}，可分配 {plan.total_quantity})",
                    payload={'line': idx, 'product_id': data['product_id'], 'shortfall': plan.shortfall}
                )

            unit_price = data.get('unit_price')
            if unit_price is None:
                unit_price = plan.weighted_average_cost

            item = StockOutItem(
                line_no=idx,
                product_id=data['product_id'],
                quantity=data['quantity'],
                unit_price=unit_price
            )
            for seq, line in enumerate(plan.lines, start=1):
                item.allocations.append(StockOutAllocation(
                    seq=seq,
                    batch_id=line.batch_id,
                    batch_number=line.batch_number,
                    quantity=line.quantity,
                    cost_price=line.cost_price,
                    expiry_date=line.expiry_date
                ))
            stock_out.items.append(item)

    @staticmethod
    def _ensure_pending(stock_out, action):
        if stock_out.status != StockOut.STATUS_PENDING:
            raise ConflictError(f"出库单 {stock_out.code} 状态为 {stock_out.status}，不能{action}",
                                payload={'status': stock_out.status})
        if any(item.reversed_at for item in stock_out.items):
            raise ConflictError(f"出库单 {stock_out.code} 已部分取消，只能继续取消",
                                payload={'status': stock_out.status})

    @staticmethod
    @transactional
    def update(stock_out_id, user, issue_type=None, items_data=None, notes=None, issue_date=None):
        """
        修改 pending 出库单 (创建人或主管)
        给出 items_data 时先把旧分配恢复到批次，再按新明细重新 FIFO 分配，
        未给单价的行重新按加权平均成本计价。任一步失败整单回滚。
        """
        stock_out = StockOutService.get(stock_out_id)
        StockOutService._ensure_pending(stock_out, '修改')
        if stock_out.created_by != user.id:
            ensure_manager(user, '修改')

        if issue_type is not None:
            if issue_type not in StockOut.TYPES:
                raise ValidationError(f"出库类型无效: {issue_type}", payload={'issue_type': issue_type})
            stock_out.issue_type = issue_type
        if issue_date is not None:
            stock_out.issue_date = issue_date
        if notes is not None:
            stock_out.notes = notes

        if items_data is not None:
            requested = StockOutService._validate_lines(items_data)
            for item in stock_out.items:
                StockOutService._restore_line(stock_out, item, False, user)
            stock_out.items.clear()
            db.session.flush()

            StockOutService._check_on_hand(requested)
            StockOutService._build_lines(stock_out, items_data)

        stock_out.recalculate_totals()
        commit()

        logger.info("出库单 %s 已修改 (操作人 %s)", stock_out.code, user.username)
        log_activity(user, 'update_stock_out', stock_out, f"修改出库单 {stock_out.code}",
                     meta={'items_replaced': items_data is not None, 'total_amount': stock_out.total_amount})
        return stock_out

    @staticmethod
    @transactional
    def approve(stock_out_id, user):
        """审批出库：逐行复核 on_hand 并扣减；重复审批返回冲突"""
        ensure_manager(user)
        stock_out = StockOutService.get(stock_out_id)
        StockOutService._ensure_pending(stock_out, '审批')

        for item in stock_out.items:
            product = ProductStockService.lock_product(item.product_id)
            if product.on_hand < item.quantity:
                raise ConflictError(
                    f"产品 {product.sku} 库存不足 (当前 {product.on_hand}，需要 {item.quantity})",
                    payload={'item_id': item.id, 'on_hand': product.on_hand, 'requested': item.quantity}
                )
            ProductStockService.apply_delta(
                product, -item.quantity, InventoryLog.TYPE_OUT,
                code=stock_out.code, user=user, remark=f"出库审批 {stock_out.code}"
            )

        stock_out.status = StockOut.STATUS_COMPLETED
        stock_out.approved_by = user.id
        stock_out.approved_at = datetime.utcnow()
        commit()

        logger.info("出库单 %s 已审批 (审批人 %s)", stock_out.code, user.username)
        log_activity(user, 'approve_stock_out', stock_out, f"审批出库单 {stock_out.code}")
        return stock_out

    @staticmethod
    def _restore_line(stock_out, item, applied, user):
        """
        恢复一个明细的分配：先校验全部批次再修改，校验失败时该行不做任何修改。
        已审批的单据按恢复后仍为 active 的批次数量回补 on_hand，
        恢复到已过期或损坏批次的数量不计入库存。
        """
        batches = []
        for alloc in item.allocations:
            batch = db.session.get(BatchLot, alloc.batch_id, with_for_update=True) if alloc.batch_id else None
            if batch is None:
                raise ValidationError(
                    f"批次 {alloc.batch_number} 不存在，无法恢复明细 {item.id}",
                    payload={'item_id': item.id, 'batch_id': alloc.batch_id}
                )
            if batch.product_id != item.product_id:
                raise ValidationError(
                    f"批次 {alloc.batch_number} 不属于明细 {item.id} 的产品",
                    payload={'item_id': item.id, 'batch_id': alloc.batch_id}
                )
            batches.append((batch, alloc.quantity))

        for batch, quantity in batches:
            batch.restore(quantity)

        if applied:
            delta = sum(quantity for batch, quantity in batches
                        if batch.is_released and batch.status == BatchLot.STATUS_ACTIVE)
            if delta:
                product = ProductStockService.lock_product(item.product_id)
                ProductStockService.apply_delta(
                    product, delta, InventoryLog.TYPE_CANCEL_OUT,
                    code=stock_out.code, user=user, remark=f"取消出库 {stock_out.code}"
                )
        item.reversed_at = datetime.utcnow()

    @staticmethod
    @transactional
    def cancel(stock_out_id, user):
        """
        取消出库单 (pending / completed → cancelled)

        逐行恢复批次剩余数量 (depleted 批次重新变为 active)；
        已审批的单据同时恢复 on_hand。每行单独提交，
        全部恢复后才执行清理并标记为 cancelled。

        某行失败时：若之前没有已提交的行，原样抛出 (无任何修改)；
        否则抛出 PartialFailure，单据保持原状态。已恢复的行写入 reversed_at，
        重试取消时跳过。
        """
        ensure_manager(user, '取消')
        stock_out = StockOutService.get(stock_out_id)
        if stock_out.status == StockOut.STATUS_CANCELLED:
            raise ConflictError(f"出库单 {stock_out.code} 已取消", payload={'status': stock_out.status})

        applied = stock_out.status == StockOut.STATUS_COMPLETED
        code = stock_out.code
        succeeded = []
        for item in [i for i in stock_out.items if i.reversed_at is None]:
            try:
                StockOutService._restore_line(stock_out, item, applied, user)
                commit()
                succeeded.append(item.id)
            except StockHubException as e:
                db.session.rollback()
                if not succeeded:
                    raise
                logger.error("PARTIAL FAILURE 出库单 %s 取消中断于明细 %s: %s (已恢复 %s)",
                             code, item.id, e.message, succeeded)
                raise PartialFailure(
                    f"出库单 {code} 部分明细已恢复，明细 {item.id} 失败，请重试取消",
                    succeeded=succeeded, failed=item.id, cause=e
                ) from e

        run_cleanup('stock_out', stock_out)

        stock_out.status = StockOut.STATUS_CANCELLED
        stock_out.cancelled_by = user.id
        stock_out.cancelled_at = datetime.utcnow()
        commit()

        logger.info("出库单 %s 已取消 (操作人 %s)", code, user.username)
        log_activity(user, 'cancel_stock_out', stock_out, f"取消出库单 {code}",
                     meta={'was_completed': applied})
        return stock_out

    @staticmethod
    @transactional
    def delete(stock_out_id, user):
        """
        删除出库单：只允许 pending 或 cancelled。
        pending 单据的分配已扣减批次，删除前先在同一工作单元内恢复。
        """
        stock_out = StockOutService.get(stock_out_id)
        if stock_out.status == StockOut.STATUS_COMPLETED:
            raise ConflictError(f"出库单 {stock_out.code} 已审批，不能删除，请先取消",
                                payload={'status': stock_out.status})
        if stock_out.status == StockOut.STATUS_PENDING:
            if stock_out.created_by != user.id:
                ensure_manager(user, '删除')
            for item in stock_out.items:
                if item.reversed_at is None:
                    StockOutService._restore_line(stock_out, item, False, user)

        code = stock_out.code
        db.session.delete(stock_out)
        commit()
        logger.info("出库单 %s 已删除 (操作人 %s)", code, user.username)
        return code
