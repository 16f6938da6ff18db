"""
Tests for the Customer and Rider Directory

Run with: pytest tests/test_customer_service.py -v
"""

import pytest
from decimal import Decimal

from aqua_ledger.models import db, Customer, RiderProfile, User
from aqua_ledger.services.customer_service import CustomerService
from aqua_ledger.utils.exceptions import InvalidRequest, NotFound


@pytest.mark.integration
class TestCustomerCrud:
    """Tests for creating and updating customers"""

    def test_create_customer(self, app):
        customer = CustomerService.create_customer({
            'name': 'Hamza Sheikh',
            'phone': ' 03451234567 ',
            'house_no': '7',
            'area': 'F-10',
            'city': 'Islamabad',
            'bottle_count': 3,
        })

        assert customer.id is not None
        assert customer.phone == '03451234567'
        assert customer.current_balance == Decimal('0.00')
        assert customer.is_active is True
        assert customer.address == '7 F-10 Islamabad'

    def test_name_required(self, app):
        with pytest.raises(InvalidRequest) as exc:
            CustomerService.create_customer({'name': '  ', 'phone': '03450000000'})
        assert exc.value.details['field'] == 'name'

    def test_duplicate_phone_rejected(self, customer):
        with pytest.raises(InvalidRequest) as exc:
            CustomerService.create_customer({'name': 'Copy', 'phone': customer.phone})
        assert exc.value.details['field'] == 'phone'
        assert 'phone number' in exc.value.message
        assert Customer.query.count() == 1

    def test_blank_phones_do_not_collide(self, app):
        CustomerService.create_customer({'name': 'No Phone A', 'phone': ''})
        CustomerService.create_customer({'name': 'No Phone B', 'phone': None})
        assert Customer.query.count() == 2

    def test_balance_cannot_be_set_directly(self, app):
        customer = CustomerService.create_customer({'name': 'Sneaky', 'current_balance': '-500'})
        assert customer.current_balance == Decimal('0.00')

    def test_update_customer(self, customer):
        updated = CustomerService.update_customer(customer.id, {'area': 'G-11', 'avg_days_to_refill': 5})
        assert updated.area == 'G-11'
        assert updated.avg_days_to_refill == 5
        assert updated.name == 'Ali Raza'

    def test_update_does_not_touch_balance(self, customer):
        customer.current_balance = Decimal('120.00')
        db.session.commit()

        updated = CustomerService.update_customer(customer.id, {'name': 'Ali R.', 'current_balance': 0})
        assert updated.current_balance == Decimal('120.00')

    def test_update_to_own_phone_allowed(self, customer):
        updated = CustomerService.update_customer(customer.id, {'phone': customer.phone})
        assert updated.phone == '03211234567'

    def test_update_to_taken_phone_rejected(self, customer, other_customer):
        with pytest.raises(InvalidRequest):
            CustomerService.update_customer(customer.id, {'phone': other_customer.phone})

    def test_update_missing_customer(self, app):
        with pytest.raises(NotFound):
            CustomerService.update_customer(404, {'name': 'Ghost'})

    def test_deactivate_and_reactivate(self, customer):
        assert CustomerService.set_customer_active(customer.id, False).is_active is False
        assert CustomerService.set_customer_active(customer.id, True).is_active is True


@pytest.mark.integration
class TestCustomerLookup:
    """Tests for lookups and the walk-in sentinel"""

    def test_get_customer(self, customer):
        assert CustomerService.get_customer(customer.id).name == 'Ali Raza'
        with pytest.raises(NotFound):
            CustomerService.get_customer(999)

    def test_walkin_customer_reused(self, app):
        first = CustomerService.get_walkin_customer()
        second = CustomerService.get_walkin_customer()
        assert first.id == second.id
        assert first.name == 'Walk-in Customer'

    def test_walkin_name_from_config(self, app):
        app.config['WALKIN_CUSTOMER_NAME'] = 'Counter Sale'
        assert CustomerService.get_walkin_customer().name == 'Counter Sale'

    def test_resolve_customer_id(self, customer):
        assert CustomerService.resolve_customer_id(str(customer.id)) == customer.id
        assert CustomerService.resolve_customer_id('walkin') == CustomerService.get_walkin_customer().id

    @pytest.mark.edge_case
    def test_resolve_invalid_ids(self, app):
        with pytest.raises(InvalidRequest):
            CustomerService.resolve_customer_id(None)
        with pytest.raises(NotFound):
            CustomerService.resolve_customer_id('abc')

    def test_search(self, customer, other_customer, inactive_customer):
        assert [c.id for c in CustomerService.search_customers('ali')] == [customer.id]
        assert [c.id for c in CustomerService.search_customers('0333')] == [other_customer.id]
        assert {c.id for c in CustomerService.search_customers(status='active')} == {customer.id, other_customer.id}
        assert [c.id for c in CustomerService.search_customers(status='inactive')] == [inactive_customer.id]
        assert len(CustomerService.search_customers()) == 3


@pytest.mark.integration
class TestRiders:
    """Tests for rider records"""

    def test_create_rider(self, app):
        rider = CustomerService.create_rider('Kamran', 'kamran@test.com', '03001230000')

        assert rider.user.role == 'RIDER'
        assert rider.user.email == 'kamran@test.com'
        assert RiderProfile.query.count() == 1
        assert CustomerService.get_rider(rider.id).name == 'Kamran'

    def test_duplicate_email_rejected(self, rider):
        with pytest.raises(InvalidRequest) as exc:
            CustomerService.create_rider('Copy', 'rider@test.com')
        assert 'email address' in exc.value.message
        assert User.query.count() == 1

    def test_rider_requires_name(self, app):
        with pytest.raises(InvalidRequest):
            CustomerService.create_rider('', 'x@test.com')

    def test_get_missing_rider(self, app):
        with pytest.raises(NotFound):
            CustomerService.get_rider(42)
