"""
Credit Lifecycle Engine

Amortized credits with installment schedules, manual payment application,
status transitions and a recurring settlement process that auto-debits due
installments. All monetary math uses Decimal.
"""

__version__ = "1.0.0"
