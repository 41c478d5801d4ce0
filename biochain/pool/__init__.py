# Transaction Pool Module
"""
Pending transactions with fee-priority selection and balance-aware admission.
"""

from .transaction_pool import SubmitResult, TransactionPool

__all__ = ['SubmitResult', 'TransactionPool']
