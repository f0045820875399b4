"""入库单表单 (表头字段；明细行见 utils.validators.json_lines)"""
from flask_wtf import FlaskForm
from wtforms import IntegerField, TextAreaField, DateTimeField
from wtforms.validators import DataRequired, Optional


class StockInForm(FlaskForm):
    class Meta:
        csrf = False

    supplier_id = IntegerField('供应商', validators=[DataRequired(message="请选择供应商")])
    import_date = DateTimeField('入库时间', format='%Y-%m-%dT%H:%M:%S', validators=[Optional()])
    notes = TextAreaField('备注', validators=[Optional()])


class StockInUpdateForm(FlaskForm):
    """修改 pending 入库单：表头字段都可省略"""
    class Meta:
        csrf = False

    supplier_id = IntegerField('供应商', validators=[Optional()])
    import_date = DateTimeField('入库时间', format='%Y-%m-%dT%H:%M:%S', validators=[Optional()])
    notes = TextAreaField('备注', validators=[Optional()])
