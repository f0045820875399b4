"""
批次分配器

出库时按 FIFO (先入库先出) 顺序从产品的可用批次中扣减数量，返回分配计划。
FEFO (先到期先出) 排序只用于效期预警和预览，不参与实际扣减。

排序规则是显式的键函数，而不是依赖数据库默认排序：
    FIFO = (入库时间, 批次ID)
    FEFO = (无效期的排最后, 效期, 入库时间, 批次ID)
"""
from datetime import date
from stockhub.models.batch import BatchLot


def fifo_key(batch):
    return (batch.received_date, batch.id)


def fefo_key(batch):
    return (batch.expiry_date is None, batch.expiry_date or date.max, batch.received_date, batch.id)


class AllocationLine:
    """分配计划中的一行：从某个批次取多少"""

    def __init__(self, batch, quantity):
        self.batch = batch
        self.batch_id = batch.id
        self.batch_number = batch.batch_number
        self.quantity = quantity
        self.cost_price = batch.cost_price or 0.0
        self.expiry_date = batch.expiry_date

    def to_dict(self):
        return {
            'batch_id': self.batch_id,
            'batch_number': self.batch_number,
            'quantity': self.quantity,
            'cost_price': self.cost_price,
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
        }


class AllocationPlan:
    """一次分配的结果；可能不足额，由调用方检查 shortfall"""

    def __init__(self, product_id, requested):
        self.product_id = product_id
        self.requested = requested
        self.lines = []

    def add(self, batch, quantity):
        self.lines.append(AllocationLine(batch, quantity))

    @property
    def total_quantity(self):
        return sum(line.quantity for line in self.lines)

    @property
    def shortfall(self):
        return max(self.requested - self.total_quantity, 0)

    @property
    def is_satisfied(self):
        return self.shortfall == 0

    @property
    def weighted_average_cost(self):
        """加权平均成本 = Σ(数量 × 成本) / Σ数量"""
        total = self.total_quantity
        if not total:
            return 0.0
        return round(sum(line.quantity * line.cost_price for line in self.lines) / total, 2)

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'requested': self.requested,
            'allocated': self.total_quantity,
            'shortfall': self.shortfall,
            'weighted_average_cost': self.weighted_average_cost,
            'lines': [line.to_dict() for line in self.lines],
        }


def candidate_batches(product_id, lock=False):
    """产品的可分配批次：已放行、active 且有剩余"""
    query = BatchLot.query.filter(
        BatchLot.product_id == product_id,
        BatchLot.status == BatchLot.STATUS_ACTIVE,
        BatchLot.remaining_quantity > 0,
        BatchLot.released_at.isnot(None)
    )
    if lock:
        query = query.with_for_update()
    return query.all()


def allocate(product_id, quantity, key=fifo_key):
    """
    按顺序逐批扣减，直到满足数量或批次用完。
    批次在此处立即扣减 (未提交)；不会抛出库存不足，调用方需检查计划总量。
    """
    plan = AllocationPlan(product_id, quantity)
    left = quantity
    for batch in sorted(candidate_batches(product_id, lock=True), key=key):
        if left <= 0:
            break
        take = min(left, batch.remaining_quantity)
        batch.draw(take)
        plan.add(batch, take)
        left -= take
    return plan


def preview(product_id, quantity, key=fefo_key):
    """只读预览：不修改任何批次"""
    plan = AllocationPlan(product_id, quantity)
    left = quantity
    for batch in sorted(candidate_batches(product_id), key=key):
        if left <= 0:
            break
        take = min(left, batch.remaining_quantity)
        plan.add(batch, take)
        left -= take
    return plan
