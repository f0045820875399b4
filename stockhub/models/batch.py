"""批次 (Batch/Lot) 模型"""
from datetime import datetime, date, timedelta
from sqlalchemy.orm import validates
from stockhub.extensions import db
from stockhub.exceptions import IntegrityViolation
from .base import BaseModel


class BatchLot(BaseModel):
    """
    入库批次
    由入库单创建；出库分配时递减，出库单取消时恢复，盘点审批时覆盖。
    不变式：0 <= remaining_quantity <= initial_quantity
    """
    __tablename__ = 'stock_batch_lots'
    __table_args__ = (
        db.UniqueConstraint('product_id', 'batch_number', name='uq_batch_product_number'),
    )

    STATUS_ACTIVE = 'active'
    STATUS_DEPLETED = 'depleted'
    STATUS_EXPIRED = 'expired'
    STATUS_DAMAGED = 'damaged'
    STATUSES = (STATUS_ACTIVE, STATUS_DEPLETED, STATUS_EXPIRED, STATUS_DAMAGED)

    batch_number = db.Column(db.String(64), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey('biz_products.id'), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('biz_suppliers.id'))
    stock_in_id = db.Column(db.Integer, db.ForeignKey('stock_ins.id'), index=True)

    manufacturing_date = db.Column(db.Date)
    expiry_date = db.Column(db.Date, index=True)
    received_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    initial_quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    cost_price = db.Column(db.Float, default=0.0, nullable=False)

    status = db.Column(db.String(20), default=STATUS_ACTIVE, index=True)
    # 入库单审批后才放行；放行前的批次不参与分配和库存汇总
    released_at = db.Column(db.DateTime)

    notes = db.Column(db.String(500))
    created_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}

    product = db.relationship('Product', backref=db.backref('batches', lazy='dynamic'))
    supplier = db.relationship('Supplier')
    creator = db.relationship('User')

    @validates('initial_quantity')
    def _validate_initial(self, key, value):
        if value is None or value < 0:
            raise IntegrityViolation(f"批次初始数量无效: {value}")
        return value

    @validates('remaining_quantity')
    def _validate_remaining(self, key, value):
        if value is None or value < 0:
            raise IntegrityViolation(
                f"批次 {self.batch_number} 剩余数量不能为负 ({value})",
                payload={'batch_id': self.id, 'remaining_quantity': value}
            )
        if self.initial_quantity is not None and value > self.initial_quantity:
            raise IntegrityViolation(
                f"批次 {self.batch_number} 剩余数量 {value} 超过初始数量 {self.initial_quantity}",
                payload={'batch_id': self.id, 'remaining_quantity': value}
            )
        return value

    def refresh_status(self, today=None):
        """根据剩余数量和效期重新推导状态 (每次数量变动后调用)"""
        today = today or date.today()
        if self.status == self.STATUS_DEPLETED and self.remaining_quantity > 0:
            self.status = self.STATUS_ACTIVE
        if self.status == self.STATUS_ACTIVE:
            if self.remaining_quantity == 0:
                self.status = self.STATUS_DEPLETED
            elif self.expiry_date and self.expiry_date < today:
                self.status = self.STATUS_EXPIRED
        return self.status

    def draw(self, quantity):
        """出库扣减"""
        self.remaining_quantity = self.remaining_quantity - quantity
        self.refresh_status()

    def restore(self, quantity):
        """出库单取消时恢复"""
        self.remaining_quantity = self.remaining_quantity + quantity
        self.refresh_status()

    def recount(self, quantity):
        """盘点覆盖；实盘超过初始数量时同步抬高初始数量"""
        if quantity > self.initial_quantity:
            self.initial_quantity = quantity
        self.remaining_quantity = quantity
        self.refresh_status()

    @property
    def is_released(self):
        return self.released_at is not None

    @property
    def is_untouched(self):
        return self.initial_quantity == self.remaining_quantity

    @property
    def quantity_used(self):
        return self.initial_quantity - self.remaining_quantity

    @property
    def remaining_percentage(self):
        if not self.initial_quantity:
            return 0
        return round(self.remaining_quantity / self.initial_quantity * 100, 1)

    @property
    def is_expired(self):
        if not self.expiry_date:
            return False
        return self.expiry_date < date.today()

    def is_near_expiry(self, days=30):
        if not self.expiry_date:
            return False
        today = date.today()
        return today <= self.expiry_date <= today + timedelta(days=days)

    def to_dict(self):
        data = super().to_dict()
        data['product_sku'] = self.product.sku if self.product else None
        data['quantity_used'] = self.quantity_used
        data['remaining_percentage'] = self.remaining_percentage
        return data

    def __repr__(self):
        return f'<BatchLot {self.batch_number} {self.remaining_quantity}/{self.initial_quantity}>'
