"""
单据取消时的附属数据清理

核心流程只依赖 DocumentCleanup 接口；具体实现在应用上注册，
取消时逐个调用，失败只记警告。
"""
import logging
from flask import current_app
from stockhub.extensions import db, cache

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'stockhub_cleanup'


class DocumentCleanup:
    """可选的清理能力接口"""
    name = 'cleanup'

    def purge(self, document_type, document):
        raise NotImplementedError


class NearExpiryCacheCleanup(DocumentCleanup):
    """批次变动后清掉效期预警缓存"""
    name = 'near_expiry_cache'

    def purge(self, document_type, document):
        from stockhub.services.batch_service import near_expiry_report
        cache.delete_memoized(near_expiry_report)


def register_cleanup(app, cleanup):
    app.extensions.setdefault(EXTENSION_KEY, []).append(cleanup)


def run_cleanup(document_type, document):
    """依次执行已注册的清理；返回失败的清理名称列表"""
    failed = []
    for cleanup in current_app.extensions.get(EXTENSION_KEY, []):
        try:
            cleanup.purge(document_type, document)
        except Exception as e:
            db.session.rollback()
            failed.append(cleanup.name)
            logger.warning("清理 %s 执行失败 (%s %s): %s", cleanup.name, document_type, document.code, e)
    return failed
