"""
业务操作记录工具
单据流转成功提交后调用；写入失败只记警告，不影响已完成的业务操作。
"""
import logging
from stockhub.extensions import db
from stockhub.models.sys import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(user, action, entity, description=None, meta=None):
    """
    记录一条操作记录 (尽力而为)
    :param user: 操作人 (可为 None，例如 CLI 任务)
    :param action: 操作名称 (如 'approve_stock_in')
    :param entity: 被操作的单据/批次对象
    :param meta: 附加信息 (dict)
    """
    try:
        log = ActivityLog(
            user_id=user.id if user is not None else None,
            action=action,
            entity_type=type(entity).__name__,
            entity_id=entity.id,
            description=description,
            meta=meta
        )
        db.session.add(log)
        db.session.commit()
        return log
    except Exception as e:
        db.session.rollback()
        logger.warning("操作记录写入失败 (%s): %s", action, e)
        return None
