"""
Billing period arithmetic
"""
from calendar import monthrange


def add_months(start, months=1):
    """
    Shift a datetime by whole calendar months, clamping the day to the target
    month's length (Jan 31 + 1 month -> Feb 28/29).
    """
    total_months = start.month - 1 + months
    year = start.year + total_months // 12
    month = total_months % 12 + 1
    day = min(start.day, monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def next_period_end(previous_end, months=1):
    """One billing period after the previous period end (never anchored to 'now')."""
    return add_months(previous_end, months)
