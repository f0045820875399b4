"""盘点相关模型"""
from datetime import datetime
from stockhub.extensions import db
from .base import BaseModel


class InventoryCheck(BaseModel):
    """盘点单"""
    __tablename__ = 'inventory_checks'

    SCOPE_ALL = 'all'
    SCOPE_CATEGORY = 'category'
    SCOPE_PRODUCT = 'product'
    SCOPES = (SCOPE_ALL, SCOPE_CATEGORY, SCOPE_PRODUCT)

    STATUS_IN_PROGRESS = 'in_progress'  # 盘点中
    STATUS_SUBMITTED = 'submitted'      # 已提交待审批
    STATUS_COMPLETED = 'completed'      # 已审批并调整库存
    STATUS_CANCELLED = 'cancelled'      # 已取消

    code = db.Column(db.String(32), unique=True, index=True)
    title = db.Column(db.String(128))
    check_date = db.Column(db.DateTime, default=datetime.utcnow)
    notes = db.Column(db.Text)

    scope = db.Column(db.String(20), default=SCOPE_PRODUCT)
    category_id = db.Column(db.Integer, db.ForeignKey('biz_categories.id'))
    status = db.Column(db.String(20), default=STATUS_IN_PROGRESS, index=True)

    # 统计
    total_items = db.Column(db.Integer, default=0)
    matched_items = db.Column(db.Integer, default=0)
    excess_items = db.Column(db.Integer, default=0)
    shortage_items = db.Column(db.Integer, default=0)

    # 操作人员
    created_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    assignee_id = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    submitted_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    submitted_at = db.Column(db.DateTime)
    approved_by = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    approved_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}

    category = db.relationship('Category')
    creator = db.relationship('User', foreign_keys=[created_by])
    assignee = db.relationship('User', foreign_keys=[assignee_id])
    approver = db.relationship('User', foreign_keys=[approved_by])
    items = db.relationship('InventoryCheckItem', backref='check', cascade='all, delete-orphan',
                            order_by='InventoryCheckItem.id')

    def recalculate(self):
        """重算每个明细的差异与分类，以及单据汇总"""
        for item in self.items:
            item.classify()
        self.total_items = len(self.items)
        self.matched_items = sum(1 for i in self.items if i.status == InventoryCheckItem.STATUS_MATCHED)
        self.excess_items = sum(1 for i in self.items if i.status == InventoryCheckItem.STATUS_EXCESS)
        self.shortage_items = sum(1 for i in self.items if i.status == InventoryCheckItem.STATUS_SHORTAGE)

    @property
    def summary(self):
        return {
            'total': self.total_items,
            'matched': self.matched_items,
            'excess': self.excess_items,
            'shortage': self.shortage_items,
        }

    def to_dict(self):
        data = super().to_dict()
        data['summary'] = self.summary
        data['items'] = [item.to_dict() for item in self.items]
        return data


class InventoryCheckItem(BaseModel):
    """盘点明细"""
    __tablename__ = 'inventory_check_items'

    STATUS_MATCHED = 'matched'    # 相符
    STATUS_EXCESS = 'excess'      # 盘盈
    STATUS_SHORTAGE = 'shortage'  # 盘亏

    REASONS = ('damaged', 'lost', 'mistake', 'expired', 'other')

    check_id = db.Column(db.Integer, db.ForeignKey('inventory_checks.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('biz_products.id'), nullable=False)

    # 按批次盘点时的批次快照
    batch_id = db.Column(db.Integer, index=True)
    batch_number = db.Column(db.String(64))
    manufacturing_date = db.Column(db.Date)
    expiry_date = db.Column(db.Date)

    system_quantity = db.Column(db.Integer, default=0)
    actual_quantity = db.Column(db.Integer, default=0)
    difference = db.Column(db.Integer, default=0)
    discrepancy_reason = db.Column(db.String(20))
    cost_price = db.Column(db.Float, default=0.0)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), default=STATUS_MATCHED)

    product = db.relationship('Product')

    def classify(self):
        self.difference = (self.actual_quantity or 0) - (self.system_quantity or 0)
        if self.difference == 0:
            self.status = self.STATUS_MATCHED
        elif self.difference > 0:
            self.status = self.STATUS_EXCESS
        else:
            self.status = self.STATUS_SHORTAGE
        return self.status

    @property
    def variance_value(self):
        """差异金额"""
        return self.difference * (self.cost_price or 0)
