"""出库单模型"""
from datetime import datetime
from stockhub.extensions import db
from .base import BaseModel


class StockOut(BaseModel):
    """出库单 (发货单据)；分配计划在创建时即固定"""
    __tablename__ = 'stock_outs'

    TYPE_SALE = 'sale'
    TYPE_INTERNAL_USE = 'internal_use'
    TYPE_DAMAGED = 'damaged'
    TYPE_EXPIRED = 'expired'
    TYPE_RETURN = 'return_to_supplier'
    TYPE_OTHER = 'other'
    TYPES = (TYPE_SALE, TYPE_INTERNAL_USE, TYPE_DAMAGED, TYPE_EXPIRED, TYPE_RETURN, TYPE_OTHER)

    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    code = db.Column(db.String(32), unique=True, index=True)
    issue_type = db.Column(db.String(32), nullable=False, index=True)

    total_amount = db.Column(db.Float, default=0.0)
    issue_date = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(db.String(20), default=STATUS_PENDING, index=True)
    notes = db.Column(db.Text)

    created_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    approved_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    approved_at = db.Column(db.DateTime)
    cancelled_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}

    creator = db.relationship('User', foreign_keys=[created_by])
    approver = db.relationship('User', foreign_keys=[approved_by])
    canceller = db.relationship('User', foreign_keys=[cancelled_by])
    items = db.relationship('StockOutItem', backref='stock_out', cascade='all, delete-orphan',
                            order_by='StockOutItem.line_no')

    def recalculate_totals(self):
        for item in self.items:
            item.total_price = round(item.quantity * item.unit_price, 2)
        self.total_amount = round(sum(item.total_price for item in self.items), 2)

    def to_dict(self):
        data = super().to_dict()
        data['items'] = [item.to_dict() for item in self.items]
        return data


class StockOutItem(BaseModel):
    """出库单明细"""
    __tablename__ = 'stock_out_items'

    stock_out_id = db.Column(db.Integer, db.ForeignKey('stock_outs.id'), nullable=False)
    line_no = db.Column(db.Integer, default=1)
    product_id = db.Column(db.Integer, db.ForeignKey('biz_products.id'), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, default=0.0)
    total_price = db.Column(db.Float, default=0.0)
    # 取消时本行分配已恢复 (与恢复在同一次提交中写入)，重试取消时跳过
    reversed_at = db.Column(db.DateTime)

    product = db.relationship('Product')
    allocations = db.relationship('StockOutAllocation', backref='item', cascade='all, delete-orphan',
                                  order_by='StockOutAllocation.seq')

    @property
    def allocated_quantity(self):
        return sum(a.quantity for a in self.allocations)

    def to_dict(self):
        data = super().to_dict()
        data['allocations'] = [a.to_dict() for a in self.allocations]
        return data


class StockOutAllocation(BaseModel):
    """出库分配计划行：从哪个批次取了多少 (创建时固定)"""
    __tablename__ = 'stock_out_allocations'

    item_id = db.Column(db.Integer, db.ForeignKey('stock_out_items.id'), nullable=False)
    seq = db.Column(db.Integer, default=1)

    # 不设外键约束：批次被删除后仍保留计划快照，取消时据此判断批次缺失
    batch_id = db.Column(db.Integer, index=True)
    batch_number = db.Column(db.String(64))
    quantity = db.Column(db.Integer, nullable=False)
    cost_price = db.Column(db.Float, default=0.0)
    expiry_date = db.Column(db.Date)
