"""单据编号生成: {前缀}{yyyymm}{4位流水号}"""
from datetime import datetime
from flask import current_app


def next_code(model, kind, now=None):
    """
    按月递增生成单据号，例如 PN2024050007
    :param model: 带 code 字段的单据模型
    :param kind: 'stock_in' / 'stock_out' / 'inventory_check'
    """
    prefix = current_app.config['STOCK_CODE_PREFIXES'][kind]
    now = now or datetime.now()
    head = f"{prefix}{now:%Y%m}"

    last = model.query.filter(model.code.like(f"{head}%")).order_by(model.code.desc()).first()
    seq = int(last.code[len(head):]) + 1 if last else 1
    return f"{head}{seq:04d}"
