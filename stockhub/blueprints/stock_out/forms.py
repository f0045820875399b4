"""出库单表单"""
from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, TextAreaField, DateTimeField
from wtforms.validators import DataRequired, Optional, AnyOf
from stockhub.models.stock_out import StockOut


class StockOutForm(FlaskForm):
    class Meta:
        csrf = False

    issue_type = SelectField('出库类型', choices=[
        (StockOut.TYPE_SALE, '销售出库'),
        (StockOut.TYPE_INTERNAL_USE, '内部领用'),
        (StockOut.TYPE_DAMAGED, '损坏报废'),
        (StockOut.TYPE_EXPIRED, '过期报废'),
        (StockOut.TYPE_RETURN, '退回供应商'),
        (StockOut.TYPE_OTHER, '其他'),
    ], validators=[DataRequired()])
    issue_date = DateTimeField('出库时间', format='%Y-%m-%dT%H:%M:%S', validators=[Optional()])
    notes = TextAreaField('备注', validators=[Optional()])


class StockOutUpdateForm(FlaskForm):
    class Meta:
        csrf = False

    issue_type = StringField('出库类型', validators=[Optional(), AnyOf(StockOut.TYPES, message="出库类型无效")])
    issue_date = DateTimeField('出库时间', format='%Y-%m-%dT%H:%M:%S', validators=[Optional()])
    notes = TextAreaField('备注', validators=[Optional()])
