"""
Business Calendar Helpers
Timestamps are stored as naive UTC; the business day follows Pakistan time (UTC+5).
"""

from datetime import date, datetime, time, timedelta, timezone

from flask import current_app, has_app_context

from aqua_ledger.utils.exceptions import InvalidRequest

DEFAULT_UTC_OFFSET_HOURS = 5


def _offset():
    hours = DEFAULT_UTC_OFFSET_HOURS
    if has_app_context():
        hours = current_app.config.get('BUSINESS_UTC_OFFSET_HOURS', DEFAULT_UTC_OFFSET_HOURS)
    return timedelta(hours=hours)


def utc_now():
    """Current time as naive UTC, matching the stored column format"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_business_time(utc_dt):
    """Shift a naive UTC datetime into business local time"""
    return utc_dt + _offset()


def today_business_date(now=None):
    """Today's calendar date in business local time"""
    return to_business_time(now or utc_now()).date()


def parse_business_date(value):
    """
    Accept a date, datetime or 'YYYY-MM-DD' string.

    Returns:
        date or None

    Raises:
        InvalidRequest: string is not a valid calendar date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise InvalidRequest(f"Invalid date '{value}', expected YYYY-MM-DD", field='date')


def business_day_range_utc(day=None):
    """
    UTC boundaries of a business day.

    Args:
        day: Business date (default: today)

    Returns:
        tuple: (start, end) naive UTC datetimes, end exclusive
    """
    day = parse_business_date(day) or today_business_date()
    start = datetime.combine(day, time.min) - _offset()
    return start, start + timedelta(days=1)


def format_business_date(utc_dt):
    """Format a stored UTC timestamp as YYYY-MM-DD in business local time"""
    if not utc_dt:
        return None
    return to_business_time(utc_dt).strftime('%Y-%m-%d')
