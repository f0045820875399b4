from stockhub.extensions import db
from .base import BaseModel


class InventoryLog(BaseModel):
    """
    库存审计流水 (核心表)
    每一次产品汇总库存变动都在同一个工作单元内写入一条流水，
    记录变动前后的数量快照。
    """
    __tablename__ = 'stock_logs'

    TYPE_IN = 'inbound'                 # 入库审批
    TYPE_OUT = 'outbound'               # 出库审批
    TYPE_CHECK = 'check'                # 盘点调整
    TYPE_CANCEL_IN = 'cancel_inbound'   # 入库单取消
    TYPE_CANCEL_OUT = 'cancel_outbound' # 出库单取消
    TYPE_ADJUST = 'adjust'              # 批次手工修改后的重算

    transaction_code = db.Column(db.String(32), index=True)  # 关联的单据号
    move_type = db.Column(db.String(20))

    product_id = db.Column(db.Integer, db.ForeignKey('biz_products.id'), index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('stock_batch_lots.id', ondelete='SET NULL'))

    qty_change = db.Column(db.Integer)       # 变动数量 (+10, -5)
    balance_before = db.Column(db.Integer)   # 变动前结余
    balance_after = db.Column(db.Integer)    # 变动后结余 (快照)

    operator_id = db.Column(db.Integer, db.ForeignKey('auth_users.id'))  # 操作人
    remark = db.Column(db.String(255))

    operator = db.relationship('User')
    product = db.relationship('Product')
