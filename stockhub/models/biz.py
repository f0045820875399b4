from stockhub.extensions import db
from stockhub.exceptions import IntegrityViolation
from .base import BaseModel


class Category(BaseModel):
    """产品分类"""
    __tablename__ = 'biz_categories'
    name = db.Column(db.String(64), unique=True)

    products = db.relationship('Product', backref='category', lazy='dynamic')


class Supplier(BaseModel):
    """供应商"""
    __tablename__ = 'biz_suppliers'

    code = db.Column(db.String(32), unique=True, index=True)
    name = db.Column(db.String(128), index=True)
    contact_person = db.Column(db.String(64))
    phone = db.Column(db.String(32))
    email = db.Column(db.String(128))
    address = db.Column(db.String(256))


class Product(BaseModel):
    """
    产品主表
    on_hand 为冗余汇总库存，应当等于该产品所有 active 批次剩余数量之和
    (可随时通过 ProductStockService.recompute 重算)。
    """
    __tablename__ = 'biz_products'

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_OUT_OF_STOCK = 'out_of_stock'
    STATUS_DISCONTINUED = 'discontinued'

    sku = db.Column(db.String(64), unique=True, index=True)  # 唯一货号
    name = db.Column(db.String(128), index=True)
    unit = db.Column(db.String(16), default='pcs')
    price = db.Column(db.Float, default=0.0)  # 售价
    cost = db.Column(db.Float, default=0.0)   # 成本价

    on_hand = db.Column(db.Integer, default=0, nullable=False)
    min_stock = db.Column(db.Integer, default=10)  # 最小库存（低于预警）
    status = db.Column(db.String(20), default=STATUS_ACTIVE, index=True)

    category_id = db.Column(db.Integer, db.ForeignKey('biz_categories.id'))
    supplier_id = db.Column(db.Integer, db.ForeignKey('biz_suppliers.id'))  # 默认供应商

    # 乐观锁版本号：并发修改同一产品时后提交者失败
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}

    supplier = db.relationship('Supplier', foreign_keys=[supplier_id])

    def set_on_hand(self, quantity):
        """写入汇总库存并同步状态 (0 → out_of_stock, >0 → active)"""
        if quantity < 0:
            raise IntegrityViolation(
                f"产品 {self.sku} 库存不能为负 (目标值 {quantity})",
                payload={'product_id': self.id, 'quantity': quantity}
            )
        self.on_hand = quantity
        if quantity == 0 and self.status == self.STATUS_ACTIVE:
            self.status = self.STATUS_OUT_OF_STOCK
        elif quantity > 0 and self.status == self.STATUS_OUT_OF_STOCK:
            self.status = self.STATUS_ACTIVE

    @property
    def is_low_stock(self):
        return (self.on_hand or 0) <= (self.min_stock or 0)

    def __repr__(self):
        return f'<Product {self.sku} on_hand={self.on_hand}>'
