"""盘点服务 - 库存盘点管理"""
import logging
from datetime import datetime
from stockhub.extensions import db
from stockhub.exceptions import (
    ValidationError, NotFound, ConflictError, PermissionDenied, PartialFailure, StockHubException
)
from stockhub.models.auth import User
from stockhub.models.batch import BatchLot
from stockhub.models.biz import Category, Product
from stockhub.models.inventory_check import InventoryCheck, InventoryCheckItem
from stockhub.models.stock import InventoryLog
from stockhub.services.stock_service import ProductStockService
from stockhub.utils.audit import log_activity
from stockhub.utils.codes import next_code
from stockhub.utils.permissions import ensure_manager
from stockhub.utils.transaction import commit, transactional

logger = logging.getLogger(__name__)


class InventoryCheckService:
    """盘点服务"""

    @staticmethod
    def get(check_id):
        check = db.session.get(InventoryCheck, check_id)
        if check is None or check.is_deleted:
            raise NotFound(f"盘点单不存在: {check_id}", payload={'check_id': check_id})
        return check

    @staticmethod
    def _scope_items(scope, category_id):
        """未指定明细时按范围选取产品"""
        query = Product.query.filter(
            Product.is_deleted == False,  # noqa: E712
            Product.status.in_([Product.STATUS_ACTIVE, Product.STATUS_OUT_OF_STOCK])
        )
        if scope == InventoryCheck.SCOPE_CATEGORY:
            if not category_id or db.session.get(Category, category_id) is None:
                raise ValidationError("按分类盘点需要有效的分类", payload={'category_id': category_id})
            query = query.filter(Product.category_id == category_id)
        elif scope != InventoryCheck.SCOPE_ALL:
            raise ValidationError("按产品盘点必须指定明细")
        return [{'product_id': p.id} for p in query.order_by(Product.id).all()]

    @staticmethod
    def _validate_count(value, line):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"第 {line} 行实盘数量无效", payload={'line': line, 'actual_quantity': value})
        return value

    @staticmethod
    def _validate_reason(reason, line):
        if reason and reason not in InventoryCheckItem.REASONS:
            raise ValidationError(f"第 {line} 行差异原因无效: {reason}", payload={'line': line})
        return reason

    @staticmethod
    @transactional
    def create(user, items_data=None, scope=InventoryCheck.SCOPE_PRODUCT, category_id=None,
               assignee_id=None, title=None, notes=None):
        """
        创建盘点单 (in_progress)
        :param items_data: [{'product_id': 1, 'batch_id': None, 'actual_quantity': 0}, ...]

        每个明细快照系统数量：按批次盘点取批次剩余，否则取产品 on_hand。
        未指定负责人时由创建人负责盘点。
        """
        if scope not in InventoryCheck.SCOPES:
            raise ValidationError(f"盘点范围无效: {scope}", payload={'scope': scope})
        if not items_data:
            items_data = InventoryCheckService._scope_items(scope, category_id)
        if not items_data:
            raise ValidationError("盘点范围内没有产品")

        assignee = user
        if assignee_id:
            assignee = db.session.get(User, assignee_id)
            if assignee is None or not assignee.is_active:
                raise ValidationError("盘点负责人不存在", payload={'assignee_id': assignee_id})

        code = next_code(InventoryCheck, 'inventory_check')
        check = InventoryCheck(
            code=code,
            title=title or f"盘点 {code}",
            notes=notes,
            scope=scope,
            category_id=category_id if scope == InventoryCheck.SCOPE_CATEGORY else None,
            created_by=user.id,
            assignee_id=assignee.id,
            status=InventoryCheck.STATUS_IN_PROGRESS
        )
        db.session.add(check)

        seen = set()
        for idx, data in enumerate(items_data, start=1):
            product_id = data.get('product_id')
            product = db.session.get(Product, product_id) if product_id else None
            if product is None or product.is_deleted:
                raise ValidationError(f"第 {idx} 行产品不存在", payload={'line': idx, 'product_id': product_id})

            batch = None
            if data.get('batch_id'):
                batch = db.session.get(BatchLot, data['batch_id'])
                if batch is None or batch.product_id != product.id:
                    raise ValidationError(f"第 {idx} 行批次不存在或不属于该产品",
                                          payload={'line': idx, 'batch_id': data['batch_id']})
                if not batch.is_released:
                    raise ValidationError(f"第 {idx} 行批次尚未入库审批，不能盘点",
                                          payload={'line': idx, 'batch_id': batch.id})

            key = (product.id, batch.id if batch else None)
            if key in seen:
                raise ValidationError(f"第 {idx} 行重复", payload={'line': idx})
            seen.add(key)

            actual = InventoryCheckService._validate_count(data.get('actual_quantity', 0), idx)
            item = InventoryCheckItem(
                product_id=product.id,
                system_quantity=batch.remaining_quantity if batch else product.on_hand,
                actual_quantity=actual,
                cost_price=batch.cost_price if batch else product.cost,
                discrepancy_reason=InventoryCheckService._validate_reason(data.get('discrepancy_reason'), idx),
                notes=data.get('notes')
            )
            if batch is not None:
                item.batch_id = batch.id
                item.batch_number = batch.batch_number
                item.manufacturing_date = batch.manufacturing_date
                item.expiry_date = batch.expiry_date
            check.items.append(item)

        check.recalculate()
        commit()

        logger.info("盘点单 %s 已创建，%d 个明细", code, check.total_items)
        log_activity(user, 'create_inventory_check', check, f"创建盘点单 {code}",
                     meta={'scope': scope, 'items': check.total_items})
        return check

    @staticmethod
    def _ensure_assignee(check, user):
        if check.assignee_id is None or user is None or check.assignee_id != user.id:
            raise PermissionDenied("只有盘点负责人可以录入或提交", payload={'check_id': check.id})

    @staticmethod
    def _find_item(check, data, line):
        if data.get('item_id'):
            for item in check.items:
                if item.id == data['item_id']:
                    return item
        else:
            for item in check.items:
                if item.product_id == data.get('product_id') and item.batch_id == data.get('batch_id'):
                    return item
        raise ValidationError(f"第 {line} 行在盘点单中不存在", payload={'line': line})

    @staticmethod
    @transactional
    def record_counts(check_id, user, items_data):
        """
        录入实盘数量
        :param items_data: [{'item_id': 1, 'actual_quantity': 50, 'discrepancy_reason': 'lost', 'notes': ''}]
                           也可以用 product_id (+ batch_id) 定位明细
        """
        check = InventoryCheckService.get(check_id)
        if check.status != InventoryCheck.STATUS_IN_PROGRESS:
            raise ConflictError(f"盘点单 {check.code} 不在盘点中状态", payload={'status': check.status})
        InventoryCheckService._ensure_assignee(check, user)
        if not items_data:
            raise ValidationError("没有需要录入的明细")

        for idx, data in enumerate(items_data, start=1):
            item = InventoryCheckService._find_item(check, data, idx)
            if 'actual_quantity' in data:
                item.actual_quantity = InventoryCheckService._validate_count(data['actual_quantity'], idx)
            if 'discrepancy_reason' in data:
                item.discrepancy_reason = InventoryCheckService._validate_reason(data['discrepancy_reason'], idx)
            if 'notes' in data:
                item.notes = data['notes']

        check.recalculate()
        commit()
        return check

    @staticmethod
    @transactional
    def submit(check_id, user):
        check = InventoryCheckService.get(check_id)
        if check.status != InventoryCheck.STATUS_IN_PROGRESS:
            raise ConflictError(f"盘点单 {check.code} 不在盘点中状态", payload={'status': check.status})
        InventoryCheckService._ensure_assignee(check, user)

        check.recalculate()
        check.status = InventoryCheck.STATUS_SUBMITTED
        check.submitted_by = user.id
        check.submitted_at = datetime.utcnow()
        commit()

        logger.info("盘点单 %s 已提交 (%s)", check.code, check.summary)
        log_activity(user, 'submit_inventory_check', check, f"提交盘点单 {check.code}", meta=check.summary)
        return check

    @staticmethod
    def _adjust_item(check, item, user):
        """
        按实盘数量调整一个明细，返回 False 表示对象已不存在被跳过。
        批次明细：覆盖批次剩余数量，再按批次合计重算产品库存；
        产品明细：直接覆盖产品 on_hand。
        """
        product = db.session.get(Product, item.product_id, with_for_update=True)
        if product is None or product.is_deleted:
            logger.warning("盘点单 %s 明细 %s 的产品已不存在，跳过", check.code, item.id)
            return False

        if item.batch_id:
            batch = db.session.get(BatchLot, item.batch_id, with_for_update=True)
            if batch is None:
                logger.warning("盘点单 %s 明细 %s 的批次已不存在，跳过", check.code, item.id)
                return False
            if not batch.is_released:
                raise ValidationError(f"批次 {batch.batch_number} 尚未入库审批，不能按盘点调整",
                                      payload={'item_id': item.id, 'batch_id': batch.id})
            batch.recount(item.actual_quantity)
            target = ProductStockService.batch_total(product.id)
        else:
            target = item.actual_quantity

        if target != product.on_hand:
            ProductStockService.overwrite(
                product, target, InventoryLog.TYPE_CHECK, code=check.code, user=user,
                batch_id=item.batch_id, remark=f"盘点调整 {check.code} ({item.status})"
            )
        return True

    @staticmethod
    @transactional
    def approve(check_id, user):
        """
        审批盘点 (submitted → completed)
        每个明细单独提交；中途失败时已调整的明细保留，抛出 PartialFailure。
        """
        ensure_manager(user)
        check = InventoryCheckService.get(check_id)
        if check.status != InventoryCheck.STATUS_SUBMITTED:
            raise ConflictError(f"盘点单 {check.code} 状态为 {check.status}，不能审批",
                                payload={'status': check.status})

        code = check.code
        succeeded, skipped = [], []
        for item in list(check.items):
            try:
                if InventoryCheckService._adjust_item(check, item, user):
                    commit()
                    succeeded.append(item.id)
                else:
                    skipped.append(item.id)
            except StockHubException as e:
                db.session.rollback()
                if not succeeded:
                    raise
                logger.error("PARTIAL FAILURE 盘点单 %s 审批中断于明细 %s: %s (已调整 %s)",
                             code, item.id, e.message, succeeded)
                raise PartialFailure(
                    f"盘点单 {code} 部分明细已调整，明细 {item.id} 失败，请执行库存重算",
                    succeeded=succeeded, failed=item.id, cause=e
                ) from e

        check.status = InventoryCheck.STATUS_COMPLETED
        check.approved_by = user.id
        check.approved_at = datetime.utcnow()
        commit()

        logger.info("盘点单 %s 已审批，调整 %d 个明细，跳过 %d 个", code, len(succeeded), len(skipped))
        log_activity(user, 'approve_inventory_check', check, f"审批盘点单 {code}",
                     meta={'adjusted': succeeded, 'skipped': skipped})
        return check

    @staticmethod
    def _ensure_editable(check, user, action):
        if check.status != InventoryCheck.STATUS_IN_PROGRESS:
            raise ConflictError(f"盘点单 {check.code} 不在盘点中状态，不能{action}", payload={'status': check.status})
        if check.created_by != user.id:
            ensure_manager(user, action)

    @staticmethod
    @transactional
    def cancel(check_id, user):
        check = InventoryCheckService.get(check_id)
        InventoryCheckService._ensure_editable(check, user, '取消')
        check.status = InventoryCheck.STATUS_CANCELLED
        commit()
        logger.info("盘点单 %s 已取消 (操作人 %s)", check.code, user.username)
        log_activity(user, 'cancel_inventory_check', check, f"取消盘点单 {check.code}")
        return check

    @staticmethod
    @transactional
    def delete(check_id, user):
        check = InventoryCheckService.get(check_id)
        InventoryCheckService._ensure_editable(check, user, '删除')
        code = check.code
        db.session.delete(check)
        commit()
        logger.info("盘点单 %s 已删除 (操作人 %s)", code, user.username)
        return code
