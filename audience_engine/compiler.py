"""
Expression compiler for campaign audience rules

A stored audience query is a flat list of rules where the gate on rule i
joins it to rule i + 1. There are no parentheses and no precedence between
AND and OR: gates bind strictly left to right, so

    A AND B OR C   is   (A AND B) OR C

The compiled Expression is that left fold over (gate, condition) pairs.
Compilation is atomic: the first invalid rule raises a CompileError and no
partially compiled expression is returned.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .exceptions import (
    CompileError,
    GatePlacementError,
    IncompatibleOperatorError,
    InvalidValueError,
    RuleValidationError,
    UnknownFieldError,
)
from .fields import FieldDescriptor, FieldRegistry, get_field_registry
from .models import LogicGate, Rule
from .operators import OperatorDescriptor
from .validation import DEFAULT_EMPTY_SUMMARY, parse_rule, parse_rule_sequence, render_rules


@dataclass(frozen=True)
class Condition:
    """Leaf predicate compiled from one rule"""

    rule_index: int
    rule: Rule
    field: FieldDescriptor
    operator: OperatorDescriptor
    operand: Any
    as_of: date
    fold_case: bool = False

    def matches(self, customer: Any) -> bool:
        """
        Test one customer

        Missing, null or unreadable values never match; this method does not
        raise for customer data.
        """
        value = self.field.extract(customer, self.as_of)
        if value is None:
            if not self.field.nullable:
                logger.trace(f"Rule {self.rule_index}: customer has no usable '{self.field.name}' value")
            return False

        if self.fold_case:
            value = value.lower()

        try:
            return bool(self.operator.compare(value, self.operand))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.trace(f"Rule {self.rule_index} could not compare {value!r}: {e}")
            return False


@dataclass(frozen=True)
class Expression:
    """
    Compiled audience filter

    ``gates[i]`` joins the result accumulated through ``conditions[i]`` with
    ``conditions[i + 1]``. An expression without conditions matches every
    customer.
    """

    conditions: Tuple[Condition, ...]
    gates: Tuple[LogicGate, ...]
    rules: Tuple[Rule, ...]
    summary: str
    as_of: date

    @property
    def is_match_all(self) -> bool:
        return not self.conditions

    def matches(self, customer: Any) -> bool:
        if not self.conditions:
            return True

        result = self.conditions[0].matches(customer)
        for gate, condition in zip(self.gates, self.conditions[1:]):
            if gate is LogicGate.AND:
                result = result and condition.matches(customer)
            else:
                result = result or condition.matches(customer)
        return result

    def describe(self) -> str:
        """Fully parenthesized form showing evaluation order, e.g. '((A AND B) OR C)'"""
        if not self.conditions:
            return "TRUE"

        text = self.conditions[0].rule.render()
        for gate, condition in zip(self.gates, self.conditions[1:]):
            text = f"({text} {gate.value} {condition.rule.render()})"
        return text

    def __len__(self) -> int:
        return len(self.conditions)


class ExpressionCompiler:
    """
    Compiles stored rule sequences into Expressions
    """

    def __init__(self, field_registry: Optional[FieldRegistry] = None, strict_gates: bool = True,
                 allow_relative_dates: bool = True, case_sensitive_contains: bool = False,
                 empty_summary_text: str = DEFAULT_EMPTY_SUMMARY):
        """
        Initialize the compiler

        Args:
            field_registry: Customer fields rules may reference. Defaults to the packaged mapping.
            strict_gates: Reject a missing gate between two rules instead of defaulting to AND
            allow_relative_dates: Accept date values such as '90 days ago'
            case_sensitive_contains: Match 'contains' case-sensitively
            empty_summary_text: Summary of an empty rule sequence
        """
        self.field_registry = field_registry or get_field_registry()
        self.strict_gates = strict_gates
        self.allow_relative_dates = allow_relative_dates
        self.case_sensitive_contains = case_sensitive_contains
        self.empty_summary_text = empty_summary_text

    def compile(self, rules: Optional[Iterable[Any]], as_of: Optional[date] = None) -> Expression:
        """
        Compile a rule sequence

        Args:
            rules: Stored audienceQuery (mappings or Rule models), possibly empty
            as_of: Reference date for relative date values. Defaults to today.

        Returns:
            Immutable Expression, reusable across customer snapshots

        Raises:
            CompileError: If any rule is invalid
        """
        as_of = as_of or date.today()
        parsed = parse_rule_sequence(rules, strict_gates=self.strict_gates)

        conditions = tuple(self._compile_rule(index, rule, as_of) for index, rule in enumerate(parsed))
        expression = Expression(
            conditions=conditions,
            gates=tuple(rule.logic_gate for rule in parsed[:-1]),
            rules=tuple(parsed),
            summary=render_rules(parsed, self.empty_summary_text),
            as_of=as_of,
        )

        logger.debug(f"Compiled {len(conditions)} rules: {expression.describe()}")
        return expression

    def _compile_rule(self, index: int, rule: Rule, as_of: date) -> Condition:
        descriptor = self.field_registry.resolve(rule.field)
        if descriptor is None:
            raise UnknownFieldError(
                f"Rule {index} references unknown field '{rule.field}' "
                f"(known fields: {', '.join(self.field_registry.names())})",
                rule_index=index,
                field=rule.field,
            )

        operator = rule.operator_descriptor
        if not operator.supports(descriptor.field_type):
            raise IncompatibleOperatorError(
                f"Rule {index}: operator '{operator.symbol}' ({operator.label}) does not apply to "
                f"{descriptor.field_type.value} field '{descriptor.name}'",
                rule_index=index,
                field=rule.field,
            )

        try:
            operand = descriptor.coerce_operand(rule.value, as_of, self.allow_relative_dates)
        except (ValueError, OverflowError) as e:
            raise InvalidValueError(
                f"Rule {index}: invalid {descriptor.field_type.value} value for '{descriptor.name}': {e}",
                rule_index=index,
                field=rule.field,
            ) from e

        fold_case = operator.folds_case and not self.case_sensitive_contains
        if fold_case:
            operand = operand.lower()

        return Condition(
            rule_index=index,
            rule=rule,
            field=descriptor,
            operator=operator,
            operand=operand,
            as_of=as_of,
            fold_case=fold_case,
        )

    def check(self, rules: Optional[Iterable[Any]], as_of: Optional[date] = None) -> Dict[str, Any]:
        """
        Report every problem in a rule sequence without raising

        Args:
            rules: Stored audienceQuery
            as_of: Reference date for relative date values

        Returns:
            Dictionary with 'valid', 'errors' (CompileError dicts), 'warnings' and 'summary'
        """
        as_of = as_of or date.today()
        results = {
            'valid': True,
            'errors': [],
            'warnings': [],
            'summary': None
        }

        if rules is None:
            rules = []

        try:
            raw_rules = list(rules)
        except TypeError:
            results['errors'].append(RuleValidationError("Rule sequence must be a list of rules").to_dict())
            results['valid'] = False
            return results

        parsed: List[Optional[Rule]] = []
        for index, raw in enumerate(raw_rules):
            try:
                parsed.append(parse_rule(raw, index))
            except RuleValidationError as e:
                results['errors'].append(e.to_dict())
                parsed.append(None)

        for index, rule in enumerate(parsed):
            if rule is None:
                continue

            is_last = index == len(parsed) - 1
            if is_last and rule.logic_gate is not None:
                results['warnings'].append(f"Trailing {rule.logic_gate.value} gate on rule {index} is ignored")
            elif not is_last and rule.logic_gate is None:
                message = f"Rule {index} has no logic gate joining it to rule {index + 1}"
                if self.strict_gates:
                    results['errors'].append(
                        GatePlacementError(message, rule_index=index, field=rule.field).to_dict()
                    )
                else:
                    results['warnings'].append(f"{message}, defaulting to AND")

            try:
                self._compile_rule(index, rule, as_of)
            except CompileError as e:
                results['errors'].append(e.to_dict())

        results['valid'] = not results['errors']
        if results['valid']:
            results['summary'] = self.compile(raw_rules, as_of).summary

        return results


def compile_rules(rules: Optional[Iterable[Any]], as_of: Optional[date] = None, **options) -> Expression:
    """Compile a rule sequence with a one-off ExpressionCompiler"""
    return ExpressionCompiler(**options).compile(rules, as_of)
