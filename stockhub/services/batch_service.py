"""批次服务 - 查询、效期预警、手工修改"""
import logging
from datetime import date, timedelta
from flask import current_app
from stockhub.extensions import db, cache
from stockhub.exceptions import ValidationError, NotFound, IntegrityViolation
from stockhub.models.batch import BatchLot
from stockhub.services import allocation
from stockhub.services.stock_service import ProductStockService
from stockhub.utils.audit import log_activity
from stockhub.utils.permissions import ensure_manager
from stockhub.utils.transaction import commit, transactional

logger = logging.getLogger(__name__)


def _warning_days(days):
    if days is None:
        days = current_app.config.get('EXPIRY_WARNING_DAYS', 30)
    if days < 0:
        raise ValidationError("预警天数不能为负", payload={'days': days})
    return days


@cache.memoize()
def near_expiry_report(days):
    """效期预警列表 (序列化结果，带缓存)"""
    return [batch.to_dict() for batch in BatchService.near_expiry(days)]


class BatchService:

    @staticmethod
    def get(batch_id):
        batch = db.session.get(BatchLot, batch_id)
        if batch is None:
            raise NotFound(f"批次不存在: {batch_id}", payload={'batch_id': batch_id})
        return batch

    @staticmethod
    def list_batches(product_id=None, status=None, expired=False, near_expiry_days=None,
                     received_from=None, received_to=None, include_staged=False):
        """
        批次列表，按效期升序、入库时间倒序
        :param expired: 只看已过期 (效期已过或状态为 expired)
        :param near_expiry_days: 只看 N 天内到期的
        """
        query = BatchLot.query
        if not include_staged:
            query = query.filter(BatchLot.released_at.isnot(None))
        if product_id:
            query = query.filter(BatchLot.product_id == product_id)
        if status:
            query = query.filter(BatchLot.status == status)

        today = date.today()
        if expired:
            query = query.filter(db.or_(BatchLot.expiry_date < today, BatchLot.status == BatchLot.STATUS_EXPIRED))
        if near_expiry_days is not None:
            limit = today + timedelta(days=_warning_days(near_expiry_days))
            query = query.filter(BatchLot.expiry_date >= today, BatchLot.expiry_date <= limit)
        if received_from:
            query = query.filter(BatchLot.received_date >= received_from)
        if received_to:
            query = query.filter(BatchLot.received_date <= received_to)

        # 无效期的批次排在最后
        return query.order_by(
            BatchLot.expiry_date.is_(None),
            BatchLot.expiry_date.asc(),
            BatchLot.received_date.desc()
        ).all()

    @staticmethod
    def near_expiry(days=None):
        """N 天内到期、仍有库存的 active 批次，按 FEFO 排序"""
        days = _warning_days(days)
        today = date.today()
        batches = BatchLot.query.filter(
            BatchLot.status == BatchLot.STATUS_ACTIVE,
            BatchLot.remaining_quantity > 0,
            BatchLot.released_at.isnot(None),
            BatchLot.expiry_date >= today,
            BatchLot.expiry_date <= today + timedelta(days=days)
        ).all()
        return sorted(batches, key=allocation.fefo_key)

    @staticmethod
    def expired():
        today = date.today()
        return BatchLot.query.filter(
            BatchLot.released_at.isnot(None),
            db.or_(BatchLot.expiry_date < today, BatchLot.status == BatchLot.STATUS_EXPIRED)
        ).order_by(BatchLot.expiry_date.asc()).all()

    @staticmethod
    def fefo_preview(product_id, quantity):
        """FEFO 顺序的建议分配 (只读，不作为实际出库依据)"""
        if quantity is None or quantity <= 0:
            raise ValidationError("数量必须大于 0", payload={'quantity': quantity})
        ProductStockService.lock_product(product_id)
        return allocation.preview(product_id, quantity, key=allocation.fefo_key)

    @staticmethod
    def batch_cost(product_id, batch_number):
        """按 (产品, 批次号) 查成本价"""
        batch = BatchLot.query.filter_by(product_id=product_id, batch_number=batch_number).first()
        if batch is None:
            raise NotFound(f"批次不存在: {batch_number}",
                           payload={'product_id': product_id, 'batch_number': batch_number})
        return batch.cost_price

    @staticmethod
    @transactional
    def expire_due(today=None, user=None):
        """
        过期扫描：把效期已过的 active 批次标记为 expired，
        并重算受影响产品的库存。返回被标记的批次。
        """
        today = today or date.today()
        due = BatchLot.query.filter(
            BatchLot.status == BatchLot.STATUS_ACTIVE,
            BatchLot.released_at.isnot(None),
            BatchLot.expiry_date < today
        ).all()
        if not due:
            return []

        product_ids = sorted({b.product_id for b in due})
        for batch in due:
            batch.refresh_status(today)
        for product_id in product_ids:
            product = ProductStockService.lock_product(product_id)
            ProductStockService.resync(product, user=user, code='EXPIRE')
        commit()
        cache.delete_memoized(near_expiry_report)

        logger.info("过期扫描完成：%d 个批次标记为 expired，涉及 %d 个产品", len(due), len(product_ids))
        return due

    @staticmethod
    @transactional
    def update_batch(batch_id, fields, user):
        """
        主管手工修改批次 (剩余数量 / 成本价 / 效期 / 生产日期 / 备注)，
        修改后重算产品库存。
        """
        ensure_manager(user, '修改批次')
        batch = BatchService.get(batch_id)
        product = ProductStockService.lock_product(batch.product_id)

        remaining = fields.get('remaining_quantity')
        if remaining is not None:
            if remaining < 0:
                raise IntegrityViolation("剩余数量不能为负", payload={'remaining_quantity': remaining})
            batch.remaining_quantity = remaining
        if fields.get('cost_price') is not None:
            if fields['cost_price'] < 0:
                raise ValidationError("成本价不能为负")
            batch.cost_price = fields['cost_price']
        if fields.get('expiry_date') is not None:
            batch.expiry_date = fields['expiry_date']
        if fields.get('manufacturing_date') is not None:
            batch.manufacturing_date = fields['manufacturing_date']
        if fields.get('notes') is not None:
            batch.notes = fields['notes']

        batch.refresh_status()
        if batch.is_released:
            ProductStockService.resync(product, user=user, code=batch.batch_number)
        commit()
        cache.delete_memoized(near_expiry_report)

        logger.info("批次 %s 已修改 (操作人 %s)", batch.batch_number, user.username)
        log_activity(user, 'update_batch', batch, f"修改批次 {batch.batch_number}",
                     meta={k: str(v) for k, v in fields.items() if v is not None})
        return batch
