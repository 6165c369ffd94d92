"""Models package."""

from .user import User
from .credit_balance import CreditBalance
from .credit_transaction import CreditTransaction
from .tracked_keyword import TrackedKeyword
