"""出库单接口"""
from flask import request, jsonify
from flask_login import login_required, current_user

from stockhub.blueprints.stock_out import stock_out_bp
from stockhub.blueprints.stock_out.forms import StockOutForm, StockOutUpdateForm
from stockhub.models.auth import User
from stockhub.models.stock_out import StockOut
from stockhub.services.stock_out_service import StockOutService
from stockhub.utils.permissions import roles_required
from stockhub.utils.validators import validate_form, json_lines


@stock_out_bp.route('', methods=['POST'])
@login_required
def create():
    form = validate_form(StockOutForm())
    stock_out = StockOutService.create(
        issue_type=form.issue_type.data,
        items_data=json_lines(),
        user=current_user,
        notes=form.notes.data,
        issue_date=form.issue_date.data
    )
    return jsonify({'success': True, 'stock_out': stock_out.to_dict()}), 201


@stock_out_bp.route('', methods=['GET'])
@login_required
def index():
    """出库单列表"""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)
    status = request.args.get('status', '')
    issue_type = request.args.get('issue_type', '')

    query = StockOut.query.filter_by(is_deleted=False)
    if status:
        query = query.filter_by(status=status)
    if issue_type:
        query = query.filter_by(issue_type=issue_type)

    pagination = query.order_by(StockOut.created_at.desc(), StockOut.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify({
        'success': True,
        'items': [s.to_dict() for s in pagination.items],
        'total': pagination.total,
        'page': page,
    })


@stock_out_bp.route('/<int:stock_out_id>', methods=['GET'])
@login_required
def detail(stock_out_id):
    return jsonify({'success': True, 'stock_out': StockOutService.get(stock_out_id).to_dict()})


@stock_out_bp.route('/<int:stock_out_id>', methods=['PUT'])
@login_required
def update(stock_out_id):
    form = validate_form(StockOutUpdateForm())
    stock_out = StockOutService.update(
        stock_out_id,
        current_user,
        issue_type=form.issue_type.data or None,
        items_data=json_lines(required=False) or None,
        notes=form.notes.data or None,
        issue_date=form.issue_date.data
    )
    return jsonify({'success': True, 'stock_out': stock_out.to_dict()})


@stock_out_bp.route('/<int:stock_out_id>', methods=['DELETE'])
@login_required
def delete(stock_out_id):
    code = StockOutService.delete(stock_out_id, current_user)
    return jsonify({'success': True, 'message': f'出库单 {code} 已删除'})


@stock_out_bp.route('/<int:stock_out_id>/approve', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def approve(stock_out_id):
    stock_out = StockOutService.approve(stock_out_id, current_user)
    return jsonify({'success': True, 'stock_out': stock_out.to_dict()})


@stock_out_bp.route('/<int:stock_out_id>/cancel', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def cancel(stock_out_id):
    stock_out = StockOutService.cancel(stock_out_id, current_user)
    return jsonify({'success': True, 'stock_out': stock_out.to_dict()})
