from .engine import (
    InvalidInput,
    calculate_balances,
    create_equal_split,
    create_percentage_split,
    validate_expense_before_add,
)

__all__ = [
    "InvalidInput",
    "calculate_balances",
    "create_equal_split",
    "create_percentage_split",
    "validate_expense_before_add",
]
