"""入库单模型"""
from datetime import datetime
from stockhub.extensions import db
from .base import BaseModel


class StockIn(BaseModel):
    """入库单 (收货单据)"""
    __tablename__ = 'stock_ins'

    STATUS_PENDING = 'pending'      # 待审批
    STATUS_COMPLETED = 'completed'  # 已审批入库
    STATUS_CANCELLED = 'cancelled'  # 已取消

    code = db.Column(db.String(32), unique=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('biz_suppliers.id'), nullable=False)

    total_amount = db.Column(db.Float, default=0.0)
    import_date = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(db.String(20), default=STATUS_PENDING, index=True)
    notes = db.Column(db.Text)

    created_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    approved_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    approved_at = db.Column(db.DateTime)
    cancelled_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}

    supplier = db.relationship('Supplier')
    creator = db.relationship('User', foreign_keys=[created_by])
    approver = db.relationship('User', foreign_keys=[approved_by])
    canceller = db.relationship('User', foreign_keys=[cancelled_by])
    items = db.relationship('StockInItem', backref='stock_in', cascade='all, delete-orphan',
                            order_by='StockInItem.line_no')
    batches = db.relationship('BatchLot', backref='stock_in', cascade='all, delete-orphan')

    def recalculate_totals(self):
        for item in self.items:
            item.total_price = item.quantity * item.unit_price
        self.total_amount = sum(item.total_price for item in self.items)

    def to_dict(self):
        data = super().to_dict()
        data['items'] = [item.to_dict() for item in self.items]
        return data


class StockInItem(BaseModel):
    """入库单明细"""
    __tablename__ = 'stock_in_items'

    stock_in_id = db.Column(db.Integer, db.ForeignKey('stock_ins.id'), nullable=False)
    line_no = db.Column(db.Integer, default=1)
    product_id = db.Column(db.Integer, db.ForeignKey('biz_products.id'), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, default=0.0)
    total_price = db.Column(db.Float, default=0.0)

    batch_number = db.Column(db.String(64))
    manufacturing_date = db.Column(db.Date)
    expiry_date = db.Column(db.Date)
    # 创建单据时生成的批次，审批前处于暂存状态
    batch_id = db.Column(db.Integer, db.ForeignKey('stock_batch_lots.id', ondelete='SET NULL'))
    # 取消时本行已冲回 (与冲回在同一次提交中写入)，重试取消时跳过
    reversed_at = db.Column(db.DateTime)

    product = db.relationship('Product')
    batch = db.relationship('BatchLot', foreign_keys=[batch_id])
