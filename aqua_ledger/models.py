"""
Database Models
SQLAlchemy ORM models for the delivery ledger
"""

from flask_sqlalchemy import SQLAlchemy

from aqua_ledger.utils.ledger import PaymentMethod, PaymentStatus
from aqua_ledger.utils.order_states import OrderPriority, OrderStatus
from aqua_ledger.utils.timezone import format_business_date, utc_now

db = SQLAlchemy()

MONEY = db.Numeric(12, 2)


def _money(value):
    """Serialize a Decimal amount without losing precision"""
    return str(value) if value is not None else None


def _timestamp(value):
    return value.isoformat() if value else None


class User(db.Model):
    """Application users (admins and riders); notification targets"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32))
    role = db.Column(db.String(16), nullable=False, default='ADMIN')  # ADMIN, RIDER
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    rider_profile = db.relationship('RiderProfile', backref='user', uselist=False)

    def __repr__(self):
        return f'<User {self.email}>'


class RiderProfile(db.Model):
    """Delivery riders"""
    __tablename__ = 'rider_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    orders = db.relationship('Order', backref='rider', lazy='dynamic')

    def __repr__(self):
        return f'<RiderProfile {self.name}>'


class Customer(db.Model):
    """Customer records with a running ledger balance"""
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    phone = db.Column(db.String(32), unique=True, index=True)
    whatsapp = db.Column(db.String(32))

    # Address
    house_no = db.Column(db.String(64))
    street_no = db.Column(db.String(64))
    area = db.Column(db.String(128))
    city = db.Column(db.String(64))

    # Refill profile
    bottle_count = db.Column(db.Integer, default=0)
    avg_days_to_refill = db.Column(db.Integer)

    # Positive: customer owes us (receivable). Negative: we owe the customer (payable).
    current_balance = db.Column(MONEY, nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    orders = db.relationship('Order', backref='customer', lazy='dynamic')

    @property
    def address(self):
        """Single-line address"""
        parts = [self.house_no, self.street_no, self.area, self.city]
        return ' '.join(p for p in parts if p)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'whatsapp': self.whatsapp,
            'house_no': self.house_no,
            'street_no': self.street_no,
            'area': self.area,
            'city': self.city,
            'address': self.address,
            'bottle_count': self.bottle_count,
            'avg_days_to_refill': self.avg_days_to_refill,
            'current_balance': _money(self.current_balance),
            'is_active': self.is_active,
            'created_at': format_business_date(self.created_at),
        }

    def __repr__(self):
        return f'<Customer {self.name}>'


class Order(db.Model):
    """Delivery, walk-in and bill-clearing orders"""
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)

    # References
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    rider_id = db.Column(db.Integer, db.ForeignKey('rider_profiles.id'), index=True)

    order_type = db.Column(db.String(16), nullable=False)  # DELIVERY, WALKIN, CLEARBILL
    status = db.Column(db.String(16), nullable=False, index=True)
    priority = db.Column(db.String(16), nullable=False, default=OrderPriority.NORMAL)

    # Charges
    number_of_bottles = db.Column(db.Integer, nullable=False, default=0)
    unit_price = db.Column(MONEY, nullable=False, default=0)
    current_order_amount = db.Column(MONEY, nullable=False, default=0)
    # Customer balance immediately before this order, needed to reverse it
    customer_balance = db.Column(MONEY, nullable=False, default=0)
    # Customer balance immediately after this order
    total_amount = db.Column(MONEY, nullable=False, default=0)

    # Payment
    paid_amount = db.Column(MONEY, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.NOT_PAID)
    payment_method = db.Column(db.String(32), nullable=False, default=PaymentMethod.CASH)
    payment_notes = db.Column(db.Text)
    receivable = db.Column(MONEY, nullable=False, default=0)
    payable = db.Column(MONEY, nullable=False, default=0)

    notes = db.Column(db.Text)
    delivered_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_terminal(self):
        return self.status in OrderStatus.TERMINAL

    @property
    def is_editable(self):
        return self.status in OrderStatus.EDITABLE

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'customer': self.customer.name if self.customer else None,
            'rider_id': self.rider_id,
            'rider': self.rider.name if self.rider else None,
            'order_type': self.order_type,
            'status': self.status,
            'priority': self.priority,
            'number_of_bottles': self.number_of_bottles,
            'unit_price': _money(self.unit_price),
            'current_order_amount': _money(self.current_order_amount),
            'customer_balance': _money(self.customer_balance),
            'total_amount': _money(self.total_amount),
            'paid_amount': _money(self.paid_amount),
            'payment_status': self.payment_status,
            'payment_method': self.payment_method,
            'payment_notes': self.payment_notes,
            'receivable': _money(self.receivable),
            'payable': _money(self.payable),
            'notes': self.notes,
            'delivered_at': _timestamp(self.delivered_at),
            'created_at': _timestamp(self.created_at),
        }

    def __repr__(self):
        return f'<Order {self.id} {self.order_type} {self.status}>'


class Notification(db.Model):
    """Notifications dispatched to users (user_id NULL means broadcast)"""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    kind = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(128), nullable=False)
    message = db.Column(db.Text, nullable=False)
    payload = db.Column(db.JSON, default=dict)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    @property
    def data(self):
        return dict(self.payload or {})

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'kind': self.kind,
            'title': self.title,
            'message': self.message,
            'data': self.data,
            'is_read': self.is_read,
            'created_at': _timestamp(self.created_at),
        }

    def __repr__(self):
        return f'<Notification {self.kind} -> {self.user_id}>'


class DailyClosing(db.Model):
    """End-of-day snapshot, one per business date"""
    __tablename__ = 'daily_closings'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, unique=True, index=True)

    # Customer ledger position at close
    customer_payable = db.Column(MONEY, default=0)
    customer_receivable = db.Column(MONEY, default=0)

    # Day's orders
    total_paid_amount = db.Column(MONEY, default=0)
    total_current_order_amount = db.Column(MONEY, default=0)
    walk_in_amount = db.Column(MONEY, default=0)
    clear_bill_amount = db.Column(MONEY, default=0)
    balance_cleared_today = db.Column(MONEY, default=0)
    total_bottles = db.Column(db.Integer, default=0)
    total_orders = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    riders = db.relationship('DailyClosingRider', backref='closing',
                             cascade='all, delete-orphan', order_by='DailyClosingRider.rider_id')
    payments = db.relationship('DailyClosingPayment', backref='closing',
                               cascade='all, delete-orphan', order_by='DailyClosingPayment.payment_method')

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'customer_payable': self.customer_payable,
            'customer_receivable': self.customer_receivable,
            'total_paid_amount': self.total_paid_amount,
            'total_current_order_amount': self.total_current_order_amount,
            'walk_in_amount': self.walk_in_amount,
            'clear_bill_amount': self.clear_bill_amount,
            'balance_cleared_today': self.balance_cleared_today,
            'total_bottles': self.total_bottles,
            'total_orders': self.total_orders,
            'riders': [r.to_dict() for r in self.riders],
            'payments': [p.to_dict() for p in self.payments],
        }

    def __repr__(self):
        return f'<DailyClosing {self.date}>'


class DailyClosingRider(db.Model):
    """Per-rider totals for a daily closing"""
    __tablename__ = 'daily_closing_riders'

    id = db.Column(db.Integer, primary_key=True)
    daily_closing_id = db.Column(db.Integer, db.ForeignKey('daily_closings.id'), nullable=False, index=True)
    rider_id = db.Column(db.Integer, db.ForeignKey('rider_profiles.id'), nullable=False)
    rider_name = db.Column(db.String(128))
    total_orders = db.Column(db.Integer, default=0)
    total_bottles = db.Column(db.Integer, default=0)
    total_current_order_amount = db.Column(MONEY, default=0)
    total_paid_amount = db.Column(MONEY, default=0)

    def to_dict(self):
        return {
            'rider_id': self.rider_id,
            'rider_name': self.rider_name,
            'total_orders': self.total_orders,
            'total_bottles': self.total_bottles,
            'total_current_order_amount': self.total_current_order_amount,
            'total_paid_amount': self.total_paid_amount,
        }


class DailyClosingPayment(db.Model):
    """Per-payment-method totals for a daily closing"""
    __tablename__ = 'daily_closing_payments'

    id = db.Column(db.Integer, primary_key=True)
    daily_closing_id = db.Column(db.Integer, db.ForeignKey('daily_closings.id'), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=False)
    total_orders = db.Column(db.Integer, default=0)
    total_paid_amount = db.Column(MONEY, default=0)

    def to_dict(self):
        return {
            'payment_method': self.payment_method,
            'total_orders': self.total_orders,
            'total_paid_amount': self.total_paid_amount,
        }
