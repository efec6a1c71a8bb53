"""
Payments Module.

Full and advance payments against purchase orders; liquidation is derived
from the active payment set.
"""

from procurement_modules.payments.models import Payment, PaymentResult, PaymentType

__all__ = ["Payment", "PaymentResult", "PaymentType"]
