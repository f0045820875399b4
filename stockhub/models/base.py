from datetime import datetime, date
from stockhub.extensions import db


class BaseModel(db.Model):
    """
    库存模型基类
    公共字段：主键、创建/更新时间、软删除标记。
    模型只负责状态与序列化，提交统一由服务层完成。
    """
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 软删除：服务层 get() 视为不存在
    is_deleted = db.Column(db.Boolean, default=False, index=True)

    # to_dict 不输出的列
    serialize_exclude = ()

    def to_dict(self, exclude=()):
        """
        列值转为可直接 jsonify 的字典，日期/时间输出 ISO 字符串。
        :param exclude: 本次额外跳过的列名
        """
        skip = set(self.serialize_exclude) | set(exclude)
        data = {}
        for column in self.__table__.columns:
            if column.name in skip:
                continue
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            data[column.name] = value
        return data
