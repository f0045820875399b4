import logging
import colorlog
from flask import Flask, jsonify
from sqlalchemy.orm.exc import StaleDataError
from config import config
from stockhub.extensions import db, migrate, login_manager, cache, csrf
from stockhub.exceptions import StockHubException

from stockhub import commands


def create_app(config_name='default'):
    """StockHub 应用工厂函数"""
    app = Flask(__name__)

    # 1. 加载配置
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # 2. 初始化扩展
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    cache.init_app(app)
    csrf.init_app(app)

    # 3. 配置日志
    configure_logging(app)

    # 4. 注册蓝图 (Blueprints)
    register_blueprints(app)

    # 5. 注册全局错误处理
    register_error_handlers(app)

    # 6. 注册 CLI 命令
    register_commands(app)

    # 7. 注册取消单据时的附属清理
    register_cleanups(app)

    return app


def register_blueprints(app):
    """注册所有业务模块蓝图 (JSON 接口，不走 CSRF 校验)"""
    from stockhub.blueprints.auth import auth_bp
    from stockhub.blueprints.stock_in import stock_in_bp
    from stockhub.blueprints.stock_out import stock_out_bp
    from stockhub.blueprints.inventory_check import inventory_check_bp
    from stockhub.blueprints.batches import batches_bp, products_bp

    for bp, prefix in (
        (auth_bp, '/auth'),
        (stock_in_bp, '/stock-in'),
        (stock_out_bp, '/stock-out'),
        (inventory_check_bp, '/inventory-checks'),
        (batches_bp, '/batches'),
        (products_bp, '/products'),
    ):
        csrf.exempt(bp)
        app.register_blueprint(bp, url_prefix=prefix)


def register_error_handlers(app):
    @app.errorhandler(StockHubException)
    def handle_stockhub_exception(e):
        return jsonify(e.to_dict()), e.code

    @app.errorhandler(StaleDataError)
    def handle_stale_data(e):
        db.session.rollback()
        return jsonify({'success': False, 'code': 409, 'message': '数据已被其他操作修改，请刷新后重试'}), 409

    @app.errorhandler(404)
    def page_not_found(e):
        return jsonify({'success': False, 'code': 404, 'message': '资源不存在'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'code': 405, 'message': '请求方法不允许'}), 405

    @app.errorhandler(500)
    def internal_server_error(e):
        db.session.rollback()
        return jsonify({'success': False, 'code': 500, 'message': '服务器内部错误'}), 500


def register_commands(app):
    """注册 Flask CLI 命令"""
    app.cli.add_command(commands.status)
    app.cli.add_command(commands.forge)
    app.cli.add_command(commands.recompute_stock)
    app.cli.add_command(commands.verify_stock)
    app.cli.add_command(commands.expire_batches)


def register_cleanups(app):
    from stockhub.services.cleanup import register_cleanup, NearExpiryCacheCleanup
    register_cleanup(app, NearExpiryCacheCleanup())


def configure_logging(app):
    """配置彩色控制台日志 (app.logger 与 stockhub.* 服务日志共用)"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setLevel(level)

    formatter = colorlog.ColoredFormatter(
        "%(log_color)s[%(asctime)s] %(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s",
        datefmt="%H:%M:%S",
        reset=True,
        log_colors={
            'DEBUG':    'cyan',
            'INFO':     'green',
            'WARNING':  'yellow',
            'ERROR':    'red',
            'CRITICAL': 'red,bg_white',
        },
        secondary_log_colors={},
        style='%'
    )
    handler.setFormatter(formatter)

    # app.logger 即 "stockhub" logger，服务模块的 logger 向上传递到这里
    app.logger.setLevel(level)
    if not any(isinstance(h.formatter, colorlog.ColoredFormatter) for h in app.logger.handlers):
        app.logger.addHandler(handler)
