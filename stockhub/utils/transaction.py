"""事务辅助：统一回滚并把数据库层冲突转换为业务异常"""
import logging
from functools import wraps
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from stockhub.extensions import db
from stockhub.exceptions import StockHubException, ConflictError, PartialFailure

logger = logging.getLogger(__name__)


def commit():
    """提交当前工作单元；版本号冲突或唯一约束冲突转为 ConflictError"""
    try:
        db.session.commit()
    except StaleDataError as e:
        db.session.rollback()
        raise ConflictError("数据已被其他操作修改，请刷新后重试") from e
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("数据重复或违反约束", payload={'detail': str(e.orig)}) from e


def transactional(f):
    """服务方法装饰器：抛出业务异常前回滚未提交的修改"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except StockHubException as e:
            db.session.rollback()
            # 部分失败已在服务内按 ERROR 记录
            if not isinstance(e, PartialFailure):
                logger.warning("%s 被拒绝 (%s): %s", f.__qualname__, e.code, e.message)
            raise
        except StaleDataError as e:
            db.session.rollback()
            logger.warning("%s 版本冲突: %s", f.__qualname__, e)
            raise ConflictError("数据已被其他操作修改，请刷新后重试") from e
    return wrapper
