"""盘点管理表单"""
from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, TextAreaField, IntegerField
from wtforms.validators import DataRequired, Optional, Length
from stockhub.models.inventory_check import InventoryCheck


class InventoryCheckCreateForm(FlaskForm):
    """创建盘点表单"""
    class Meta:
        csrf = False

    scope = SelectField('盘点范围', choices=[
        (InventoryCheck.SCOPE_ALL, '全部产品'),
        (InventoryCheck.SCOPE_CATEGORY, '按分类'),
        (InventoryCheck.SCOPE_PRODUCT, '指定产品'),
    ], default=InventoryCheck.SCOPE_PRODUCT, validators=[DataRequired()])
    category_id = IntegerField('分类', validators=[Optional()])
    assignee_id = IntegerField('负责人', validators=[Optional()])
    title = StringField('标题', validators=[Optional(), Length(max=128)])
    notes = TextAreaField('备注', validators=[Optional()])
