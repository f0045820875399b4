from flask import Blueprint

# 批次与产品库存接口放在同一个模块
batches_bp = Blueprint('batches', __name__)
products_bp = Blueprint('products', __name__)

from . import routes
