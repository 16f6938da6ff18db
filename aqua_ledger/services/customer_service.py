"""
Customer Service
Customer and rider directory used by the order ledger.
Balances are never edited here; only ledger operations move them.
"""

import logging
from typing import List, Optional

from flask import current_app
from sqlalchemy import or_

from aqua_ledger.models import db, Customer, RiderProfile, User
from aqua_ledger.utils.db_utils import get_or_create, run_in_transaction
from aqua_ledger.utils.exceptions import InvalidRequest, NotFound

logger = logging.getLogger(__name__)

WALKIN_ID = 'walkin'

CUSTOMER_FIELDS = (
    'name', 'phone', 'whatsapp', 'house_no', 'street_no', 'area', 'city',
    'bottle_count', 'avg_days_to_refill',
)

FIELD_DISPLAY_NAMES = {
    'phone': 'phone number',
    'email': 'email address',
}


def _clean(data):
    cleaned = {k: data.get(k) for k in CUSTOMER_FIELDS if k in data}
    for key in ('phone', 'whatsapp'):
        if key in cleaned:
            cleaned[key] = (cleaned[key] or '').strip() or None
    if 'bottle_count' in cleaned:
        cleaned['bottle_count'] = cleaned['bottle_count'] or 0
    if 'avg_days_to_refill' in cleaned:
        cleaned['avg_days_to_refill'] = cleaned['avg_days_to_refill'] or None
    return cleaned


class CustomerService:
    """Customer and rider lookups and maintenance"""

    @staticmethod
    def get_customer(customer_id) -> Customer:
        customer = db.session.get(Customer, customer_id)
        if not customer:
            raise NotFound('Customer not found', customer_id=customer_id)
        return customer

    @staticmethod
    def get_walkin_customer() -> Customer:
        """Walk-in sentinel, created on first use"""
        name = current_app.config.get('WALKIN_CUSTOMER_NAME', 'Walk-in Customer')

        def _get_or_create():
            customer, created = get_or_create(Customer, name=name)
            if created:
                logger.info(f"Created walk-in customer sentinel '{name}' (id {customer.id})")
            return customer

        return run_in_transaction(_get_or_create)

    @staticmethod
    def resolve_customer_id(customer_id) -> int:
        """Map the 'walkin' sentinel id to the walk-in customer's id"""
        if isinstance(customer_id, str) and customer_id.strip().lower() == WALKIN_ID:
            return CustomerService.get_walkin_customer().id
        if customer_id is None or customer_id == '':
            raise InvalidRequest('Customer is required', field='customer_id')
        try:
            return int(customer_id)
        except (TypeError, ValueError):
            raise NotFound('Customer not found', customer_id=customer_id)

    @staticmethod
    def _check_unique_phone(phone, exclude_id=None):
        if not phone:
            return
        query = Customer.query.filter(Customer.phone == phone)
        if exclude_id is not None:
            query = query.filter(Customer.id != exclude_id)
        if query.first():
            raise InvalidRequest(
                f"Client with this {FIELD_DISPLAY_NAMES['phone']} already exists",
                field='phone', value=phone
            )

    @staticmethod
    def create_customer(data) -> Customer:
        """Create a customer with a zero balance"""
        fields = _clean(data)
        if not (fields.get('name') or '').strip():
            raise InvalidRequest('Customer name is required', field='name')

        def _create():
            CustomerService._check_unique_phone(fields.get('phone'))
            customer = Customer(**fields)
            db.session.add(customer)
            db.session.flush()
            return customer

        customer = run_in_transaction(_create)
        logger.info(f"Customer created: {customer.id} {customer.name}")
        return customer

    @staticmethod
    def update_customer(customer_id, data) -> Customer:
        """Update contact, address and refill details"""
        fields = _clean(data)
        if 'name' in fields and not (fields['name'] or '').strip():
            raise InvalidRequest('Customer name is required', field='name')

        def _update():
            customer = CustomerService.get_customer(customer_id)
            CustomerService._check_unique_phone(fields.get('phone'), exclude_id=customer.id)
            for key, value in fields.items():
                setattr(customer, key, value)
            return customer

        return run_in_transaction(_update)

    @staticmethod
    def set_customer_active(customer_id, is_active) -> Customer:
        """Activate or deactivate a customer"""
        def _set():
            customer = CustomerService.get_customer(customer_id)
            customer.is_active = bool(is_active)
            return customer

        customer = run_in_transaction(_set)
        logger.info(f"Customer {customer.id} {'activated' if customer.is_active else 'deactivated'}")
        return customer

    @staticmethod
    def search_customers(q: Optional[str] = None, status: Optional[str] = None) -> List[Customer]:
        """
        Search customers

        Args:
            q: Matches name, phone, whatsapp or house number
            status: 'active', 'inactive' or None for all
        """
        query = Customer.query
        if status == 'active':
            query = query.filter(Customer.is_active.is_(True))
        elif status == 'inactive':
            query = query.filter(Customer.is_active.is_(False))
        if q:
            term = f'%{q.strip()}%'
            query = query.filter(or_(
                Customer.name.ilike(term),
                Customer.phone.ilike(term),
                Customer.whatsapp.ilike(term),
                Customer.house_no.ilike(term)
            ))
        return query.order_by(Customer.created_at.desc(), Customer.id.desc()).all()

    @staticmethod
    def get_rider(rider_id) -> RiderProfile:
        rider = db.session.get(RiderProfile, rider_id)
        if not rider:
            raise NotFound('Rider not found', rider_id=rider_id)
        return rider

    @staticmethod
    def create_rider(name, email, phone=None) -> RiderProfile:
        """Create a rider together with the user account it is notified through"""
        if not (name or '').strip():
            raise InvalidRequest('Rider name is required', field='name')
        if not (email or '').strip():
            raise InvalidRequest('Rider email is required', field='email')

        def _create():
            if User.query.filter_by(email=email).first():
                raise InvalidRequest(
                    f"User with this {FIELD_DISPLAY_NAMES['email']} already exists",
                    field='email', value=email
                )
            user = User(email=email, phone=phone, role='RIDER', is_active=True)
            db.session.add(user)
            db.session.flush()
            rider = RiderProfile(user_id=user.id, name=name.strip(), phone=phone)
            db.session.add(rider)
            db.session.flush()
            return rider

        rider = run_in_transaction(_create)
        logger.info(f"Rider created: {rider.id} {rider.name}")
        return rider
