"""
Order State Machine
Status and type constants plus precondition checks for every ledger operation
"""

from aqua_ledger.utils.exceptions import InvalidRequest, InvalidState


class OrderStatus:
    """Order status constants"""
    CREATED = 'CREATED'
    PENDING = 'PENDING'
    ASSIGNED = 'ASSIGNED'
    IN_PROGRESS = 'IN_PROGRESS'
    DELIVERED = 'DELIVERED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    ALL = (CREATED, PENDING, ASSIGNED, IN_PROGRESS, DELIVERED, COMPLETED, CANCELLED)

    EDITABLE = frozenset({PENDING, ASSIGNED, IN_PROGRESS})
    TERMINAL = frozenset({DELIVERED, COMPLETED, CANCELLED})
    # Orders in these states keep the counter from closing
    OPEN = frozenset({CREATED, PENDING, ASSIGNED, IN_PROGRESS})


class OrderType:
    """Order type constants"""
    DELIVERY = 'DELIVERY'
    WALKIN = 'WALKIN'
    CLEARBILL = 'CLEARBILL'

    ALL = (DELIVERY, WALKIN, CLEARBILL)


class OrderPriority:
    """Order priority constants"""
    LOW = 'LOW'
    NORMAL = 'NORMAL'
    HIGH = 'HIGH'
    URGENT = 'URGENT'

    ALL = (LOW, NORMAL, HIGH, URGENT)


def normalize_choice(value, choices, field, default=None):
    """
    Upper-case a user supplied enum value and check it against choices.

    Raises:
        InvalidRequest: value is not one of choices
    """
    if value is None or value == '':
        if default is None:
            raise InvalidRequest(f'{field} is required', field=field)
        return default
    normalized = str(value).strip().upper()
    if normalized not in choices:
        raise InvalidRequest(
            f"Invalid {field} '{value}'. Expected one of: {', '.join(choices)}",
            field=field
        )
    return normalized


def initial_status(order_type, rider_id):
    """
    Validate rider constraints for a new order and return its first status.

    DELIVERY orders must have a rider and start ASSIGNED. WALKIN orders must
    not have a rider and start CREATED. CLEARBILL rows are only produced by
    bill clearing and never through order creation.
    """
    if order_type == OrderType.DELIVERY:
        if not rider_id:
            raise InvalidRequest('Rider is required for delivery orders', field='rider_id')
        return OrderStatus.ASSIGNED

    if order_type == OrderType.WALKIN:
        if rider_id:
            raise InvalidRequest('Walk-in orders cannot be assigned to a rider', field='rider_id')
        return OrderStatus.CREATED

    raise InvalidRequest(
        'Clear-bill orders are created through bill clearing only',
        field='order_type'
    )


def check_can_deliver(order):
    """Delivery orders can be delivered from any non-terminal state"""
    if order.order_type != OrderType.DELIVERY:
        raise InvalidState(
            f'Only delivery orders can be delivered (order type: {order.order_type})',
            status=order.status
        )
    if order.status in OrderStatus.TERMINAL:
        raise InvalidState(f'Order cannot be delivered (status: {order.status})', status=order.status)


def check_can_complete_walkin(order):
    """Walk-in orders complete only from CREATED"""
    if order.order_type != OrderType.WALKIN:
        raise InvalidState(
            f'Only walk-in orders can be completed (order type: {order.order_type})',
            status=order.status
        )
    if order.status != OrderStatus.CREATED:
        raise InvalidState(f'Walk-in order cannot be completed (status: {order.status})', status=order.status)


def check_can_cancel(order):
    """No ledger-affecting transition leaves a terminal state"""
    if order.status in OrderStatus.TERMINAL:
        raise InvalidState(f'Order cannot be cancelled (status: {order.status})', status=order.status)


def check_can_amend(order):
    if order.status not in OrderStatus.EDITABLE:
        raise InvalidState(f'Order cannot be amended (status: {order.status})', status=order.status)


def check_can_assign(order):
    """Riders can be (re)assigned to delivery orders that have not left the depot"""
    if order.order_type != OrderType.DELIVERY:
        raise InvalidState('Only delivery orders can be assigned to a rider', status=order.status)
    if order.status not in (OrderStatus.PENDING, OrderStatus.ASSIGNED):
        raise InvalidState(f'Rider cannot be assigned (status: {order.status})', status=order.status)


def check_can_start(order):
    if order.order_type != OrderType.DELIVERY or order.status != OrderStatus.ASSIGNED:
        raise InvalidState(
            f'Only assigned delivery orders can be started (status: {order.status})',
            status=order.status
        )
