"""
权限控制工具
服务层使用 ensure_manager，路由层使用 roles_required 装饰器。
"""
from functools import wraps
from flask_login import current_user
from stockhub.exceptions import PermissionDenied


def ensure_manager(user, action='审批'):
    """只有管理员和仓库主管可以审批/取消单据"""
    if user is None or not user.is_manager:
        raise PermissionDenied(f"没有{action}权限", payload={'action': action})


def roles_required(*roles):
    """
    角色检查装饰器

    用法:
        @roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
        def approve(id):
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated or not current_user.has_role(*roles):
                raise PermissionDenied("您没有权限执行此操作")
            return f(*args, **kwargs)
        return decorated_function
    return decorator
