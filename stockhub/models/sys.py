from stockhub.extensions import db
from .base import BaseModel


class ActivityLog(BaseModel):
    """业务操作记录 (尽力写入，失败不影响业务)"""
    __tablename__ = 'sys_activity_logs'

    user_id = db.Column(db.Integer, db.ForeignKey('auth_users.id'))
    action = db.Column(db.String(64), index=True)       # e.g., 'approve_stock_in'
    entity_type = db.Column(db.String(32))              # e.g., 'StockIn'
    entity_id = db.Column(db.Integer)
    description = db.Column(db.String(255))
    meta = db.Column(db.JSON)

    user = db.relationship('User')
