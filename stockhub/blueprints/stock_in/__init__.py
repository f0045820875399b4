from flask import Blueprint

stock_in_bp = Blueprint('stock_in', __name__)

from . import routes
