"""
测试配置与公共夹具
每个测试使用独立的内存 SQLite 数据库
"""
from datetime import datetime, timedelta

import pytest
from flask_login import FlaskLoginClient

from stockhub import create_app
from stockhub.extensions import db as _db
from stockhub.models import User, Category, Supplier, Product
from stockhub.services.stock_in_service import StockInService


@pytest.fixture
def app():
    app = create_app('testing')
    app.test_client_class = FlaskLoginClient
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


def _user(username, role):
    user = User(username=username, email=f'{username}@stockhub.com', full_name=username.title(),
                role=role, password='secret')
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture
def admin(db):
    return _user('admin', User.ROLE_ADMIN)


@pytest.fixture
def manager(db):
    return _user('manager', User.ROLE_MANAGER)


@pytest.fixture
def staff(db):
    return _user('staff', User.ROLE_STAFF)


@pytest.fixture
def category(db):
    c = Category(name='乳制品')
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def supplier(db):
    s = Supplier(code='SUP01', name='绿野供应链', contact_person='王经理', phone='13800000000')
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def make_product(db, category, supplier):
    counter = {'n': 0}

    def _make(sku=None, cost=10.0, min_stock=10, **kwargs):
        counter['n'] += 1
        product = Product(
            sku=sku or f'SKU-{counter["n"]:03d}',
            name=f'测试产品 {counter["n"]}',
            cost=cost,
            price=cost * 1.5,
            min_stock=min_stock,
            category_id=category.id,
            supplier_id=supplier.id,
            **kwargs
        )
        db.session.add(product)
        db.session.commit()
        return product
    return _make


@pytest.fixture
def product(make_product):
    return make_product(sku='MILK-001')


@pytest.fixture
def base_time():
    return datetime(2024, 1, 1, 8, 0, 0)


@pytest.fixture
def receive(supplier, staff, manager, base_time):
    """
    入库并 (默认) 审批，返回生成的批次
    day 表示相对 base_time 的入库天数，用于控制 FIFO 顺序
    """
    def _receive(product, quantity, cost=10.0, day=0, expiry=None, batch_number=None, approve=True):
        stock_in = StockInService.create(
            supplier.id,
            [{
                'product_id': product.id,
                'quantity': quantity,
                'unit_price': cost,
                'expiry_date': expiry,
                'batch_number': batch_number,
            }],
            staff,
            import_date=base_time + timedelta(days=day)
        )
        if approve:
            StockInService.approve(stock_in.id, manager)
        return stock_in.items[0].batch
    return _receive
