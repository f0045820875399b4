import click
import random
from datetime import date, timedelta
from flask.cli import with_appcontext
from stockhub.extensions import db
from stockhub.exceptions import StockHubException
from stockhub.models.auth import User
from stockhub.models.biz import Category, Supplier, Product
from stockhub.models.batch import BatchLot
from stockhub.models.stock import InventoryLog
from stockhub.models.stock_in import StockIn
from stockhub.models.stock_out import StockOut
from stockhub.models.inventory_check import InventoryCheck
from stockhub.services.batch_service import BatchService
from stockhub.services.stock_service import ProductStockService
from stockhub.services.stock_in_service import StockInService
from stockhub.services.stock_out_service import StockOutService
from stockhub.services.inventory_check_service import InventoryCheckService
from stockhub.utils.fake_gen import fake, WarehouseProvider


@click.command('status')
@with_appcontext
def status():
    """查看当前数据库中的数据统计"""
    click.echo(click.style('📊 StockHub 数据库状态:', fg='cyan', bold=True))

    u_count = User.query.count()
    p_count = Product.query.count()
    b_count = BatchLot.query.count()
    click.echo(f" - 用户 (Users): \t{u_count}")
    click.echo(f" - 产品 (Products): \t{p_count}")
    click.echo(f" - 批次 (Batches): \t{b_count}")
    click.echo(f" - 入库单 (Stock-in): \t{StockIn.query.count()}")
    click.echo(f" - 出库单 (Stock-out): \t{StockOut.query.count()}")
    click.echo(f" - 盘点单 (Checks): \t{InventoryCheck.query.count()}")
    click.echo(f" - 库存流水 (Logs): \t{InventoryLog.query.count()}")

    if u_count > 0:
        click.echo(click.style('✔ 数据库连接正常，数据已存在。', fg='green'))
    else:
        click.echo(click.style('⚠ 数据库为空，请运行 flask forge 生成数据。', fg='yellow'))


@click.command('forge')
@click.option('--products', default=20, help='产品数量 (默认20)')
@click.option('--receipts', default=10, help='入库单数量 (默认10)')
@click.option('--issues', default=10, help='出库单数量 (默认10)')
@with_appcontext
def forge(products, receipts, issues):
    """
    生成演示数据：所有库存变动都通过真实的入库/出库/盘点流程产生。
    警告：这将清除数据库中的现有数据！
    """
    click.echo(click.style('⚡ 初始化 StockHub 演示数据...', fg='cyan', bold=True))

    db.drop_all()
    db.create_all()

    click.echo('正在创建用户...')
    admin, manager, staff = init_users()

    click.echo('正在创建分类、供应商与产品...')
    suppliers, items = init_catalog(products)

    click.echo(f'正在生成 {receipts} 张入库单...')
    for _ in range(receipts):
        lines = []
        for product in random.sample(items, k=min(3, len(items))):
            lines.append({
                'product_id': product.id,
                'quantity': random.randint(20, 200),
                'unit_price': product.cost,
                'manufacturing_date': date.today() - timedelta(days=random.randint(10, 60)),
                'expiry_date': date.today() + timedelta(days=random.randint(5, 365)),
            })
        stock_in = StockInService.create(random.choice(suppliers).id, lines, staff)
        if random.random() < 0.8:
            StockInService.approve(stock_in.id, manager)

    click.echo(f'正在生成 {issues} 张出库单...')
    made = 0
    for _ in range(issues):
        candidates = [p for p in items if p.on_hand > 0]
        if not candidates:
            break
        product = random.choice(candidates)
        quantity = random.randint(1, max(1, product.on_hand // 3))
        try:
            stock_out = StockOutService.create(
                random.choice(StockOut.TYPES),
                [{'product_id': product.id, 'quantity': quantity}],
                staff
            )
        except StockHubException as e:
            click.echo(click.style(f'  跳过: {e.message}', fg='yellow'))
            continue
        made += 1
        if random.random() < 0.7:
            StockOutService.approve(stock_out.id, manager)

    click.echo('正在生成盘点单...')
    check = InventoryCheckService.create(staff, scope=InventoryCheck.SCOPE_ALL, title='月度盘点')
    InventoryCheckService.record_counts(check.id, staff, [
        {'item_id': item.id, 'actual_quantity': max(item.system_quantity + random.randint(-3, 3), 0),
         'discrepancy_reason': random.choice(['damaged', 'lost', 'mistake'])}
        for item in check.items
    ])

    click.echo(click.style('✔ StockHub 演示数据构建完成！', fg='green', bold=True))
    click.echo(f"管理员账号: {admin.email} / 密码: admin")
    click.echo(f"数据统计: {len(items)} 产品, {receipts} 入库单, {made} 出库单, 1 盘点单")


def init_users():
    admin = User(username='admin', email='admin@stockhub.com', full_name='系统管理员',
                 role=User.ROLE_ADMIN, password='admin')
    manager = User(username='manager', email='manager@stockhub.com', full_name=fake.name(),
                   role=User.ROLE_MANAGER, password='manager')
    staff = User(username='staff', email='staff@stockhub.com', full_name=fake.name(),
                 role=User.ROLE_STAFF, password='staff')
    db.session.add_all([admin, manager, staff])
    db.session.commit()
    return admin, manager, staff


def init_catalog(count):
    categories = []
    for name in WarehouseProvider.category_names:
        c = Category(name=name)
        db.session.add(c)
        categories.append(c)

    suppliers = []
    for i in range(5):
        s = Supplier(
            code=f"SUP{i + 1:02d}",
            name=fake.company(),
            contact_person=fake.name(),
            phone=fake.phone_number(),
            email=fake.company_email(),
            address=fake.address()
        )
        db.session.add(s)
        suppliers.append(s)
    db.session.flush()

    products = []
    for i in range(count):
        cost = round(random.uniform(2, 80), 2)
        p = Product(
            sku=f"SKU-{i + 1:05d}",
            name=fake.product_name(),
            unit=fake.stock_unit(),
            cost=cost,
            price=round(cost * random.uniform(1.2, 1.8), 2),
            min_stock=random.randint(5, 30),
            category_id=random.choice(categories).id,
            supplier_id=random.choice(suppliers).id
        )
        db.session.add(p)
        products.append(p)
    db.session.commit()
    return suppliers, products


@click.command('recompute-stock')
@click.option('--product-id', type=int, default=None, help='只重算指定产品')
@click.option('--all-statuses', is_flag=True, help='合计所有状态的批次 (默认只计 active)')
@with_appcontext
def recompute_stock(product_id, all_statuses):
    """按批次合计重算产品 on_hand"""
    if product_id:
        ids = [product_id]
    else:
        ids = [p.id for p in Product.query.filter_by(is_deleted=False).order_by(Product.id).all()]

    changed = 0
    for pid in ids:
        product = db.session.get(Product, pid)
        before = product.on_hand if product else None
        try:
            after = ProductStockService.recompute(pid, active_only=not all_statuses)
        except StockHubException as e:
            click.echo(click.style(f'✘ 产品 {pid}: {e.message}', fg='red'))
            continue
        if before != after:
            changed += 1
            click.echo(f" - 产品 {pid}: {before} → {after}")

    click.echo(click.style(f'✔ 已重算 {len(ids)} 个产品，{changed} 个发生变化。', fg='green'))


@click.command('verify-stock')
@click.option('--fix', is_flag=True, help='发现不一致时自动重算')
@with_appcontext
def verify_stock(fix):
    """核对产品 on_hand 与批次合计"""
    drift = ProductStockService.verify()
    if not drift:
        click.echo(click.style('✔ 所有产品库存与批次一致。', fg='green'))
        return

    click.echo(click.style(f'⚠ {len(drift)} 个产品库存与批次不一致:', fg='yellow'))
    for row in drift:
        click.echo(f" - {row['sku']}: on_hand={row['on_hand']} 批次合计={row['batch_total']} 差异={row['difference']}")

    if fix:
        for row in drift:
            ProductStockService.recompute(row['product_id'])
        click.echo(click.style('✔ 已按批次合计修复。', fg='green'))
    else:
        click.get_current_context().exit(1)


@click.command('expire-batches')
@click.option('--date', 'as_of', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='以指定日期 (YYYY-MM-DD) 判断过期')
@with_appcontext
def expire_batches(as_of):
    """把效期已过的批次标记为 expired 并重算库存"""
    today = as_of.date() if as_of else None
    expired = BatchService.expire_due(today=today)
    for batch in expired:
        click.echo(f" - {batch.batch_number} (产品 {batch.product_id}) 效期 {batch.expiry_date}")
    click.echo(click.style(f'✔ 已标记 {len(expired)} 个过期批次。', fg='green'))
