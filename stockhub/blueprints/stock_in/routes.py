"""入库单接口"""
from flask import request, jsonify
from flask_login import login_required, current_user

from stockhub.blueprints.stock_in import stock_in_bp
from stockhub.blueprints.stock_in.forms import StockInForm, StockInUpdateForm
from stockhub.models.auth import User
from stockhub.models.stock_in import StockIn
from stockhub.services.stock_in_service import StockInService
from stockhub.utils.permissions import roles_required
from stockhub.utils.validators import validate_form, json_lines


@stock_in_bp.route('', methods=['POST'])
@login_required
def create():
    form = validate_form(StockInForm())
    stock_in = StockInService.create(
        supplier_id=form.supplier_id.data,
        items_data=json_lines(),
        user=current_user,
        notes=form.notes.data,
        import_date=form.import_date.data
    )
    return jsonify({'success': True, 'stock_in': stock_in.to_dict()}), 201


@stock_in_bp.route('', methods=['GET'])
@login_required
def index():
    """入库单列表"""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)
    status = request.args.get('status', '')
    supplier_id = request.args.get('supplier_id', 0, type=int)

    query = StockIn.query.filter_by(is_deleted=False)
    if status:
        query = query.filter_by(status=status)
    if supplier_id:
        query = query.filter_by(supplier_id=supplier_id)

    pagination = query.order_by(StockIn.created_at.desc(), StockIn.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify({
        'success': True,
        'items': [s.to_dict() for s in pagination.items],
        'total': pagination.total,
        'page': page,
    })


@stock_in_bp.route('/<int:stock_in_id>', methods=['GET'])
@login_required
def detail(stock_in_id):
    return jsonify({'success': True, 'stock_in': StockInService.get(stock_in_id).to_dict()})


@stock_in_bp.route('/<int:stock_in_id>', methods=['PUT'])
@login_required
def update(stock_in_id):
    """修改 pending 入库单；给出 items 时整单明细替换"""
    form = validate_form(StockInUpdateForm())
    stock_in = StockInService.update(
        stock_in_id,
        current_user,
        supplier_id=form.supplier_id.data,
        items_data=json_lines(required=False) or None,
        notes=form.notes.data or None,
        import_date=form.import_date.data
    )
    return jsonify({'success': True, 'stock_in': stock_in.to_dict()})


@stock_in_bp.route('/<int:stock_in_id>', methods=['DELETE'])
@login_required
def delete(stock_in_id):
    code = StockInService.delete(stock_in_id, current_user)
    return jsonify({'success': True, 'message': f'入库单 {code} 已删除'})


@stock_in_bp.route('/<int:stock_in_id>/approve', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def approve(stock_in_id):
    stock_in = StockInService.approve(stock_in_id, current_user)
    return jsonify({'success': True, 'stock_in': stock_in.to_dict()})


@stock_in_bp.route('/<int:stock_in_id>/cancel', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def cancel(stock_in_id):
    stock_in = StockInService.cancel(stock_in_id, current_user)
    return jsonify({'success': True, 'stock_in': stock_in.to_dict()})
