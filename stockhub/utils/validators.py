"""
请求数据校验
表头字段用 Flask-WTF 表单校验，明细行 (JSON 数组) 在这里做类型转换。
"""
from datetime import datetime
from flask import request
from wtforms.validators import ValidationError as FieldError
from stockhub.exceptions import ValidationError

DATE_FIELDS = ('manufacturing_date', 'expiry_date')


def validate_non_negative(form, field):
    """验证非负数"""
    if field.data is not None and field.data < 0:
        raise FieldError('数值不能为负')


def validate_form(form):
    """表单校验失败时抛出业务异常 (由全局错误处理返回 400)"""
    if not form.validate():
        raise ValidationError("请求参数无效", payload={'errors': form.errors})
    return form


def parse_date(value, field='date'):
    if value in (None, ''):
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError(f"日期格式应为 YYYY-MM-DD: {field}", payload={'field': field, 'value': value})


def json_lines(key='items', required=True):
    """读取请求体中的明细数组，并把日期字段转成 date"""
    payload = request.get_json(silent=True) or {}
    lines = payload.get(key)
    if lines is None and not required:
        return []
    if not isinstance(lines, list) or (required and not lines):
        raise ValidationError(f"{key} 必须是非空数组", payload={'field': key})

    parsed = []
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError(f"{key} 中的每一行必须是对象", payload={'field': key})
        line = dict(line)
        for name in DATE_FIELDS:
            if name in line:
                line[name] = parse_date(line[name], name)
        parsed.append(line)
    return parsed


def non_negative_number(value, line, field='unit_price'):
    """明细行中的金额字段：必须是非负数字 (布尔值不算)"""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(f"第 {line} 行 {field} 必须是非负数", payload={'line': line, field: value})
    return float(value)
