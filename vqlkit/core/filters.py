from __future__ import annotations
from typing import Dict

from .condition import Operator

# Operator -> SQL keyword/symbol. Every Operator member must be listed.
OPERATOR_SYMBOLS: Dict[Operator, str] = {
    Operator.AND: 'AND',
    Operator.OR: 'OR',
    Operator.EQUAL_TO: '=',
    Operator.NOT_EQUAL_TO: '<>',
    Operator.GREATER_THAN: '>',
    Operator.GREATER_THAN_OR_EQUAL_TO: '>=',
    Operator.LESS_THAN: '<',
    Operator.LESS_THAN_OR_EQUAL_TO: '<=',
    Operator.LIKE: 'LIKE',
    Operator.NOT_LIKE: 'NOT LIKE',
}


def operator_symbol(operator: Operator) -> str:
    try:
        return OPERATOR_SYMBOLS[operator]
    except KeyError:
        raise ValueError(f"unsupported operator: {operator!r}") from None
