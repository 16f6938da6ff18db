"""
Application Entry Point
Initializes the Flask application, its CLI commands and the daily closing scheduler
"""

import os
import logging

import click

from aqua_ledger import create_app, db
from aqua_ledger.services.customer_service import CustomerService
from aqua_ledger.services.daily_closing_service import DailyClosingService
from aqua_ledger.utils.db_utils import init_database
from aqua_ledger.utils.exceptions import LedgerError

# Determine configuration environment
config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

# Setup logging
if not os.path.exists(app.config['LOG_FOLDER']):
    os.makedirs(app.config['LOG_FOLDER'])

logging.basicConfig(
    level=getattr(logging, app.config['LOG_LEVEL']),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.path.join(app.config['LOG_FOLDER'], 'app.log')),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


@app.shell_context_processor
def make_shell_context():
    """Make database and models available in Flask shell"""
    from aqua_ledger import models
    return {
        'db': db,
        'Customer': models.Customer,
        'Order': models.Order,
        'RiderProfile': models.RiderProfile,
        'DailyClosing': models.DailyClosing,
    }


@app.cli.command()
def init_db():
    """Initialize the database with tables and the walk-in customer"""
    logger.info("Initializing database...")
    if not init_database():
        raise click.ClickException('Database initialization failed, see log')
    walkin = CustomerService.get_walkin_customer()
    logger.info(f"Database initialized successfully! Walk-in customer id: {walkin.id}")


@app.cli.command()
def seed_walkin():
    """Create the walk-in customer if it does not exist"""
    walkin = CustomerService.get_walkin_customer()
    click.echo(f"Walk-in customer: {walkin.id} {walkin.name}")


@app.cli.command()
@click.option('--date', 'day', default=None, help='Business date YYYY-MM-DD (default: today)')
def closing_summary(day):
    """Print the daily closing preview"""
    try:
        summary = DailyClosingService(app).get_summary(day)
    except LedgerError as e:
        raise click.ClickException(e.message)
    symbol = app.config.get('CURRENCY_SYMBOL', 'Rs.')

    click.echo(f"Daily closing for {summary['date']}")
    click.echo(f"  Can close:          {summary['can_close']} ({summary['blocking_orders']} open orders)")
    click.echo(f"  Already saved:      {summary['already_exists']}")
    click.echo(f"  Orders / bottles:   {summary['total_orders']} / {summary['total_bottles']}")
    for key in ('total_current_order_amount', 'total_paid_amount', 'walk_in_amount',
                'clear_bill_amount', 'balance_cleared_today', 'customer_receivable', 'customer_payable'):
        click.echo(f"  {key.replace('_', ' ').capitalize() + ':':<20}{symbol} {summary[key]:,.2f}")
    for rider in summary['riders']:
        click.echo(f"  Rider {rider['rider_name']}: {rider['total_orders']} orders, "
                   f"collected {symbol} {rider['total_paid_amount']:,.2f}")
    for payment in summary['payments']:
        click.echo(f"  {payment['payment_method']}: {payment['total_orders']} orders, "
                   f"{symbol} {payment['total_paid_amount']:,.2f}")


@app.cli.command()
@click.option('--date', 'day', default=None, help='Business date YYYY-MM-DD (default: today)')
def close_day(day):
    """Save the daily closing"""
    try:
        closing = DailyClosingService(app).save_closing(day)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"Daily closing saved for {closing.date}")


def start_background_services():
    """Start the automatic daily closing when enabled"""
    if app.config['AUTO_DAILY_CLOSING']:
        closing_service = DailyClosingService(app)
        closing_service.start_scheduler()
        logger.info("Daily closing service started")
        return closing_service
    return None


if __name__ == '__main__':
    # Check if running in development mode
    is_dev = os.environ.get('FLASK_ENV', 'development') == 'development'
    use_reloader = os.environ.get('FLASK_USE_RELOADER', 'true').lower() == 'true'

    with app.app_context():
        # Create tables if they don't exist
        db.create_all()
        logger.info("Database tables created")

    # Start background services (only if not using reloader to avoid duplicate services)
    if not use_reloader or os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
        start_background_services()

    logger.info(f"Starting {app.config['BUSINESS_NAME']} ledger service...")
    logger.info(f"Debug mode: {is_dev}, Auto-reload: {use_reloader}")

    app.run(
        host='0.0.0.0',
        port=5001,
        debug=is_dev,
        use_reloader=use_reloader
    )
