from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from stockhub.extensions import db
from .base import BaseModel


class User(UserMixin, BaseModel):
    """用户"""
    __tablename__ = 'auth_users'

    ROLE_ADMIN = 'admin'
    ROLE_MANAGER = 'warehouse_manager'
    ROLE_STAFF = 'warehouse_staff'
    ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF)

    serialize_exclude = ('password_hash',)

    email = db.Column(db.String(128), unique=True, index=True)
    username = db.Column(db.String(64), index=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(128))
    phone = db.Column(db.String(20))

    role = db.Column(db.String(32), default=ROLE_STAFF, index=True)
    is_active_user = db.Column(db.Boolean, default=True)  # 封号开关
    last_login = db.Column(db.DateTime)

    @property
    def password(self):
        raise AttributeError('密码不可读')

    @password.setter
    def password(self, password):
        self.password_hash = generate_password_hash(password)

    def verify_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == self.ROLE_ADMIN

    @property
    def is_manager(self):
        """管理员与仓库主管可以审批单据"""
        return self.role in (self.ROLE_ADMIN, self.ROLE_MANAGER)

    def has_role(self, *roles):
        return self.role in roles

    # Flask-Login 必须属性覆盖
    @property
    def is_active(self):
        return bool(self.is_active_user) and not self.is_deleted

    def __repr__(self):
        return f'<User {self.username} ({self.role})>'
