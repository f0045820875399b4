"""批次查询 / 修改 与 产品库存重算接口"""
from flask import request, jsonify, current_app
from flask_login import login_required, current_user

from stockhub.blueprints.batches import batches_bp, products_bp
from stockhub.blueprints.batches.forms import BatchUpdateForm
from stockhub.exceptions import ValidationError
from stockhub.models.auth import User
from stockhub.services.batch_service import BatchService, near_expiry_report
from stockhub.services.stock_service import ProductStockService
from stockhub.utils.permissions import roles_required
from stockhub.utils.validators import validate_form, parse_date


@batches_bp.route('', methods=['GET'])
@login_required
def index():
    """批次列表 (按效期升序、入库时间倒序)"""
    near_days = request.args.get('near_expiry_days', type=int)
    if near_days is None and request.args.get('near_expiry') == 'true':
        near_days = current_app.config['EXPIRY_WARNING_DAYS']

    batches = BatchService.list_batches(
        product_id=request.args.get('product_id', type=int),
        status=request.args.get('status') or None,
        expired=request.args.get('expired') == 'true',
        near_expiry_days=near_days,
        received_from=parse_date(request.args.get('received_from'), 'received_from'),
        received_to=parse_date(request.args.get('received_to'), 'received_to'),
    )
    return jsonify({'success': True, 'items': [b.to_dict() for b in batches], 'total': len(batches)})


@batches_bp.route('/<int:batch_id>', methods=['PUT'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def update(batch_id):
    form = validate_form(BatchUpdateForm())
    batch = BatchService.update_batch(batch_id, {
        'remaining_quantity': form.remaining_quantity.data,
        'cost_price': form.cost_price.data,
        'expiry_date': form.expiry_date.data,
        'manufacturing_date': form.manufacturing_date.data,
        'notes': form.notes.data or None,
    }, current_user)
    return jsonify({'success': True, 'batch': batch.to_dict()})


@batches_bp.route('/cost', methods=['GET'])
@login_required
def cost():
    """按 (产品, 批次号) 查询成本价"""
    product_id = request.args.get('product_id', type=int)
    batch_number = request.args.get('batch_number', '').strip()
    if not product_id or not batch_number:
        raise ValidationError("需要 product_id 和 batch_number")
    return jsonify({
        'success': True,
        'product_id': product_id,
        'batch_number': batch_number,
        'cost_price': BatchService.batch_cost(product_id, batch_number),
    })


@batches_bp.route('/near-expiry', methods=['GET'])
@login_required
def near_expiry():
    days = request.args.get('days', current_app.config['EXPIRY_WARNING_DAYS'], type=int)
    items = near_expiry_report(days)
    return jsonify({'success': True, 'days': days, 'items': items, 'total': len(items)})


@batches_bp.route('/expired', methods=['GET'])
@login_required
def expired():
    batches = BatchService.expired()
    return jsonify({'success': True, 'items': [b.to_dict() for b in batches], 'total': len(batches)})


@batches_bp.route('/fefo-preview', methods=['GET'])
@login_required
def fefo_preview():
    """按效期先出的建议分配 (仅供参考)"""
    product_id = request.args.get('product_id', type=int)
    quantity = request.args.get('quantity', type=int)
    plan = BatchService.fefo_preview(product_id, quantity)
    return jsonify({'success': True, 'plan': plan.to_dict()})


@products_bp.route('/<int:product_id>/recompute', methods=['POST'])
@login_required
@roles_required(User.ROLE_ADMIN, User.ROLE_MANAGER)
def recompute(product_id):
    quantity = ProductStockService.recompute(product_id, user=current_user)
    return jsonify({'success': True, 'product_id': product_id, 'on_hand': quantity})


@products_bp.route('/verify', methods=['GET'])
@login_required
def verify():
    """核对 on_hand 与批次合计 (只读)"""
    drift = ProductStockService.verify()
    return jsonify({'success': True, 'consistent': not drift, 'drift': drift})


@products_bp.route('/low-stock', methods=['GET'])
@login_required
def low_stock():
    products = ProductStockService.low_stock()
    return jsonify({
        'success': True,
        'items': [
            {'id': p.id, 'sku': p.sku, 'name': p.name, 'on_hand': p.on_hand, 'min_stock': p.min_stock}
            for p in products
        ],
    })
