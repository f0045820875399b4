class StockHubException(Exception):
    """库存系统基础异常类"""
    def __init__(self, message, code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['success'] = False
        return rv


class ValidationError(StockHubException):
    """参数或引用对象无效 (未修改任何数据)"""
    def __init__(self, message="Invalid data", payload=None):
        super().__init__(message, code=400, payload=payload)


class NotFound(ValidationError):
    """引用的对象不存在"""
    def __init__(self, message="Not found", payload=None):
        super().__init__(message, payload=payload)
        self.code = 404


class PermissionDenied(StockHubException):
    """权限不足"""
    def __init__(self, message="Access denied", payload=None):
        super().__init__(message, code=403, payload=payload)


class ConflictError(StockHubException):
    """
    状态冲突：单据状态不允许该操作、库存不足、批次已被部分出库、
    并发写入时版本号不一致等。未修改任何数据。
    """
    def __init__(self, message="Conflict", payload=None):
        super().__init__(message, code=409, payload=payload)


class IntegrityViolation(StockHubException):
    """操作会导致数量为负 (或批次剩余超过初始数量)，写入前拒绝"""
    def __init__(self, message="Quantity integrity violated", payload=None):
        super().__init__(message, code=422, payload=payload)


class PartialFailure(StockHubException):
    """
    多明细操作中途失败：已提交的明细不会回滚。
    payload 中 succeeded / failed 为明细 ID，修复方式为重算商品库存。
    """
    def __init__(self, message, succeeded=None, failed=None, cause=None):
        payload = {
            'succeeded': list(succeeded or []),
            'failed': failed,
        }
        super().__init__(message, code=500, payload=payload)
        self.succeeded = payload['succeeded']
        self.failed = failed
        self.cause = cause
