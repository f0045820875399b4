from flask import Blueprint

inventory_check_bp = Blueprint('inventory_check', __name__)

from . import routes
