from datetime import datetime
from flask import jsonify
from flask_login import login_user, logout_user, login_required, current_user

from stockhub.extensions import db
from stockhub.exceptions import StockHubException
from stockhub.models.auth import User
from stockhub.blueprints.auth import auth_bp
from stockhub.blueprints.auth.forms import LoginForm
from stockhub.utils.validators import validate_form


@auth_bp.route('/login', methods=['POST'])
def login():
    form = validate_form(LoginForm())
    user = User.query.filter_by(email=form.email.data).first()

    if user is None or not user.verify_password(form.password.data):
        raise StockHubException('邮箱或密码错误', code=401)
    if not user.is_active:
        raise StockHubException('账户已被停用，请联系管理员', code=401)

    login_user(user, remember=form.remember_me.data)
    user.last_login = datetime.utcnow()
    db.session.commit()
    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    username = current_user.username
    logout_user()
    return jsonify({'success': True, 'message': f'{username} 已退出登录'})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})
