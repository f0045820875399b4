"""产品汇总库存服务 - on_hand 的写入、重算与核对"""
import logging
from sqlalchemy import func
from stockhub.extensions import db
from stockhub.exceptions import NotFound
from stockhub.models.biz import Product
from stockhub.models.batch import BatchLot
from stockhub.models.stock import InventoryLog
from stockhub.utils.transaction import commit, transactional

logger = logging.getLogger(__name__)


class ProductStockService:
    """产品库存汇总"""

    @staticmethod
    def lock_product(product_id):
        """加载并锁定产品行 (支持的数据库上为 SELECT ... FOR UPDATE)"""
        product = db.session.get(Product, product_id, with_for_update=True) if product_id else None
        if product is None or product.is_deleted:
            raise NotFound(f"产品不存在: {product_id}", payload={'product_id': product_id})
        return product

    @staticmethod
    def apply_delta(product, delta, move_type, code=None, user=None, batch_id=None, remark=None):
        """
        按增量修改 on_hand，并在同一工作单元内写入库存流水 (不提交)。
        结果为负时抛出 IntegrityViolation，不做任何写入。
        """
        before = product.on_hand or 0
        product.set_on_hand(before + delta)
        log = InventoryLog(
            transaction_code=code,
            move_type=move_type,
            product_id=product.id,
            batch_id=batch_id,
            qty_change=delta,
            balance_before=before,
            balance_after=product.on_hand,
            operator_id=user.id if user is not None else None,
            remark=remark
        )
        db.session.add(log)
        return log

    @staticmethod
    def overwrite(product, quantity, move_type, code=None, user=None, batch_id=None, remark=None):
        """把 on_hand 直接覆盖为目标值 (盘点/重算)，流水记录差额"""
        return ProductStockService.apply_delta(
            product, quantity - (product.on_hand or 0), move_type,
            code=code, user=user, batch_id=batch_id, remark=remark
        )

    @staticmethod
    def batch_total(product_id, active_only=True):
        """产品已放行批次的剩余数量合计"""
        query = db.session.query(func.coalesce(func.sum(BatchLot.remaining_quantity), 0)).filter(
            BatchLot.product_id == product_id,
            BatchLot.released_at.isnot(None)
        )
        if active_only:
            query = query.filter(BatchLot.status == BatchLot.STATUS_ACTIVE)
        return int(query.scalar() or 0)

    @staticmethod
    def resync(product, user=None, code=None, active_only=True):
        """在当前工作单元内用批次合计覆盖 on_hand (不提交)；无差异时不写流水"""
        total = ProductStockService.batch_total(product.id, active_only=active_only)
        if total != product.on_hand:
            ProductStockService.overwrite(
                product, total, InventoryLog.TYPE_ADJUST, code=code, user=user,
                remark='按批次合计重算库存'
            )
        return total

    @staticmethod
    @transactional
    def recompute(product_id, user=None, active_only=True):
        """
        重算产品库存：on_hand = Σ 批次剩余数量 (默认只计 active)。
        权威的修复操作，可随时执行。
        :return: 重算后的数量
        """
        product = ProductStockService.lock_product(product_id)
        before = product.on_hand
        total = ProductStockService.resync(product, user=user, active_only=active_only)
        commit()
        if before != total:
            logger.info("产品 %s 库存已重算: %s -> %s", product.sku, before, total)
        return total

    @staticmethod
    def verify(product_ids=None):
        """只读核对：返回 on_hand 与批次合计不一致的产品"""
        totals = dict(
            db.session.query(BatchLot.product_id, func.sum(BatchLot.remaining_quantity))
            .filter(BatchLot.status == BatchLot.STATUS_ACTIVE, BatchLot.released_at.isnot(None))
            .group_by(BatchLot.product_id)
            .all()
        )

        query = Product.query.filter_by(is_deleted=False)
        if product_ids:
            query = query.filter(Product.id.in_(product_ids))

        drift = []
        for product in query.order_by(Product.id).all():
            batch_total = int(totals.get(product.id) or 0)
            if batch_total != product.on_hand:
                drift.append({
                    'product_id': product.id,
                    'sku': product.sku,
                    'on_hand': product.on_hand,
                    'batch_total': batch_total,
                    'difference': product.on_hand - batch_total,
                })
        return drift

    @staticmethod
    def low_stock():
        """低于或等于最小库存的在售产品"""
        return Product.query.filter(
            Product.is_deleted == False,  # noqa: E712
            Product.status.in_([Product.STATUS_ACTIVE, Product.STATUS_OUT_OF_STOCK]),
            Product.on_hand <= Product.min_stock
        ).order_by(Product.on_hand).all()
