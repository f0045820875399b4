from flask import Blueprint

stock_out_bp = Blueprint('stock_out', __name__)

from . import routes
