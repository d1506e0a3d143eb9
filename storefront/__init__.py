import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from storefront.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Models (registers every table with db.metadata) ───────────
    from storefront.catalog import models as _catalog_models  # noqa: F401

    # ── Blueprints ────────────────────────────────────────────────
    from storefront.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from storefront.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from storefront.cart import cart as cart_blueprint
    app.register_blueprint(cart_blueprint, url_prefix='/cart')

    from storefront.vouchers import vouchers as vouchers_blueprint
    app.register_blueprint(vouchers_blueprint, url_prefix='/vouchers')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'FORBIDDEN', 'message': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'NOT_FOUND', 'message': 'Resource not found.'}), 404

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({'error': 'SERVER_ERROR', 'message': 'Internal server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo('✅  Database tables created.')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create an admin user (manages vouchers)."""
        from storefront.auth.models import User, RoleEnum

        if User.query.filter_by(username=username).first():
            click.echo(f'⚠️  User "{username}" already exists.')
            return

        admin = User(name=name, username=username, role=RoleEnum.admin)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        click.echo(f'✅  Admin user "{username}" created successfully.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate database with demo products, a customer and a voucher."""
        from datetime import datetime, timedelta
        from decimal import Decimal
        import random
        from storefront.auth.models import User, RoleEnum
        from storefront.catalog.models import Product, ProductStatus
        from storefront.vouchers.models import Voucher, DiscountType

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if not User.query.filter_by(username='customer1').first():
            u = User(name='Demo Customer', username='customer1', role=RoleEnum.customer)
            u.set_password('demo123')
            db.session.add(u)
            db.session.commit()
            click.echo("✅ Customer created (customer1/demo123).")

        if Product.query.count() < 5:
            names = ['T-Shirt', 'Jeans', 'Sneakers', 'Cap', 'Hoodie', 'Socks', 'Scarf', 'Belt']
            for i in range(1, 21):
                p = Product(
                    sku=f'DEMO-{i:04d}',
                    name=f'{random.choice(names)} {i}',
                    price_excl_tax=Decimal(random.randint(100, 5000)),
                    tax_rate=random.choice([app.config['DEFAULT_TAX_RATE'], Decimal('10'), Decimal('15')]),
                    stock_quantity=random.randint(5, 100),
                    status=ProductStatus.active,
                )
                db.session.add(p)
            db.session.commit()
            click.echo("✅ Products seeded.")

        if not Voucher.query.filter_by(code='WELCOME10').first():
            now = datetime.utcnow()
            db.session.add(Voucher(
                code='WELCOME10',
                name='Welcome 10% off',
                discount_type=DiscountType.percentage,
                discount_value=Decimal('10'),
                max_discount_amount=Decimal('500'),
                minimum_order_amount=Decimal('0'),
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=90),
                usage_limit_per_customer=1,
            ))
            db.session.commit()
            click.echo("✅ Voucher WELCOME10 created.")

        click.echo("✅ Demo seed complete.")

    @app.cli.command('carts-summary')
    def carts_summary():
        """Show every cart with its stored totals (diagnostic)."""
        from storefront.cart.models import Cart
        rows = Cart.query.order_by(Cart.id).all()
        if not rows:
            click.echo('No carts found.')
            return
        click.echo(f'{"Cart":<6} {"Owner":<24} {"Items":<6} {"Voucher":<12} {"Subtotal":>10} {"Tax":>9} {"Disc":>9} {"Total":>10}')
        click.echo('─' * 92)
        for c in rows:
            owner = f'user:{c.user_id}' if c.user_id else f'guest:{c.session_id[:18]}'
            click.echo(
                f'{c.id:<6} {owner:<24} {len(c.items):<6} {c.voucher_code or "-":<12} '
                f'{c.subtotal_excl_tax:>10} {c.total_tax:>9} {c.discount_amount:>9} {c.total_amount:>10}'
            )

    # ── ProxyFix (HTTPS termination at the load balancer) ──
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app
