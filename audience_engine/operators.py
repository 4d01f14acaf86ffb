"""
Comparison operators available to audience rules
"""

import operator as _op
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from .fields import FieldType


ORDERED_TYPES = frozenset({FieldType.NUMBER, FieldType.DATE})
ALL_TYPES = frozenset(FieldType)


def _contains(value: str, operand: str) -> bool:
    return operand in value


@dataclass(frozen=True)
class OperatorDescriptor:
    """A comparison operator: canonical symbol, accepted aliases and the types it applies to"""

    symbol: str
    label: str
    compare: Callable[[Any, Any], bool]
    field_types: FrozenSet[FieldType]
    aliases: Tuple[str, ...] = ()
    folds_case: bool = False

    def supports(self, field_type: FieldType) -> bool:
        return field_type in self.field_types


OPERATORS: Tuple[OperatorDescriptor, ...] = (
    OperatorDescriptor("=", "equals", _op.eq, ALL_TYPES, ("==", "eq", "equals")),
    OperatorDescriptor("!=", "does not equal", _op.ne, ALL_TYPES, ("<>", "neq", "not_equals")),
    OperatorDescriptor(">", "greater than", _op.gt, ORDERED_TYPES, ("gt",)),
    OperatorDescriptor("<", "less than", _op.lt, ORDERED_TYPES, ("lt",)),
    OperatorDescriptor(">=", "greater than or equal to", _op.ge, ORDERED_TYPES, ("gte",)),
    OperatorDescriptor("<=", "less than or equal to", _op.le, ORDERED_TYPES, ("lte",)),
    OperatorDescriptor("contains", "contains", _contains, frozenset({FieldType.STRING}), ("includes",), folds_case=True),
)

_LOOKUP: Dict[str, OperatorDescriptor] = {}
for _descriptor in OPERATORS:
    for _token in (_descriptor.symbol,) + _descriptor.aliases:
        _LOOKUP[_token.lower()] = _descriptor


def resolve_operator(token: str) -> Optional[OperatorDescriptor]:
    """Resolve an operator token (symbol or alias, case-insensitive); None if unknown"""
    if not isinstance(token, str):
        return None
    return _LOOKUP.get(token.strip().lower())


def operator_symbols() -> List[str]:
    """Canonical operator symbols"""
    return [descriptor.symbol for descriptor in OPERATORS]
