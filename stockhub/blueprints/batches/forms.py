"""批次修改表单"""
from flask_wtf import FlaskForm
from wtforms import IntegerField, FloatField, DateField, StringField
from wtforms.validators import Optional, Length
from stockhub.utils.validators import validate_non_negative


class BatchUpdateForm(FlaskForm):
    class Meta:
        csrf = False

    # 剩余数量为负由服务层拒绝 (422)
    remaining_quantity = IntegerField('剩余数量', validators=[Optional()])
    cost_price = FloatField('成本价', validators=[Optional(), validate_non_negative])
    expiry_date = DateField('效期', validators=[Optional()])
    manufacturing_date = DateField('生产日期', validators=[Optional()])
    notes = StringField('备注', validators=[Optional(), Length(max=500)])
