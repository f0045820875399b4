"""盘点管理接口"""
from flask import request, jsonify
from flask_login import login_required, current_user

from stockhub.blueprints.inventory_check import inventory_check_bp
from stockhub.blueprints.inventory_check.forms import InventoryCheckCreateForm
from stockhub.models.auth import User
from stockhub.models.inventory_check import InventoryCheck
from stockhub.services.inventory_check_service import InventoryCheckService
from stockhub.utils.permissions import roles_required
from stockhub.utils.validators import validate_form, json_lines


@inventory_check_bp.route('', methods=['POST'])
@login_required
def create():
    form = validate_form(InventoryCheckCreateForm())
    check = InventoryCheckService.create(
        user=current_user,
        items_data=json_lines(required=False),
        scope=form.scope.data,
        category_id=form.category_id.data,
        assignee_id=form.assignee_id.data,
        title=form.title.data,
        notes=form.notes.data
    )
    return jsonify({'success': True, 'check': check.to_dict()}), 201


@inventory_check_bp.route('', methods=['GET'])
@login_required
def index():
    """盘点单列表"""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)
    status = request.args.get('status', '')

    query = InventoryCheck.query.filter_by(is_deleted=False)
    if status:
        query = query.filter_by(status=status)
    if request.args.get('mine'):
        query = query.filter_by(assignee_id=current_user.id)

    pagination = query.order_by(InventoryCheck.created_at.desc(), InventoryCheck.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify({
        'success': True,
        'items': [c.to_dict() for c in pagination.items],
        'total': pagination.total,
        'page': page,
    })


@inventory_check_bp.route('/<int:check_id>', methods=['GET'])
@login_required
def detail(check_id):
    return jsonify({'success': True, 'check': InventoryCheckService.get(check_id).to_dict()})


@inventory_check_bp.route('/<int:check_id>', methods=['DELETE'])
@login_required
def delete(check_id):
    code = InventoryCheckService.delete(check_id, current_user)
    return jsonify({'success': True, 'message': f'盘点单 {code} 已删除'})


@inventory_check_bp.route('/<int:check_id>/items', methods=['PUT'])
@login_required
def record_counts(check_id):
    """录入实盘数量"""
    check = InventoryCheckService.record_counts(check_id, current_user, json_lines())
    return jsonify({'success': True, 'check': check.to_dict()})


@inventory_check_bp.route('/<int:check_id>/submit', methods=['POST'])
@login_required
def submit(check_id):
    check = InventoryCheckService.submit(check_id, current_user)
    return jsonify({'success': True, 'check': check.to_dict()})


@inventory_check_bp.route('/<int:check_id>/approve', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def approve(check_id):
    check = InventoryCheckService.approve(check_id, current_user)
    return jsonify({'success': True, 'check': check.to_dict()})


@inventory_check_bp.route('/<int:check_id>/cancel', methods=['POST'])
@login_required
def cancel(check_id):
    check = InventoryCheckService.cancel(check_id, current_user)
    return jsonify({'success': True, 'check': check.to_dict()})
