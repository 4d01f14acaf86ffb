"""
Rule sequence validation, serialization and rendering
"""

from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError

from .exceptions import GatePlacementError, RuleValidationError
from .models import LogicGate, Rule


DEFAULT_EMPTY_SUMMARY = "All customers"


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(loc) for loc in detail.get('loc', ())) or "rule"
        parts.append(f"{location}: {detail.get('msg')}")
    return "; ".join(parts)


def parse_rule(raw: Any, index: Optional[int] = None) -> Rule:
    """
    Validate a single stored rule

    Args:
        raw: Rule model or mapping with field, operator, value and optional logicGate
        index: Position in the sequence, for error reporting

    Returns:
        Validated Rule

    Raises:
        RuleValidationError: If the rule is malformed
    """
    if isinstance(raw, Rule):
        return raw

    if not isinstance(raw, Mapping):
        raise RuleValidationError(f"Rule {index} must be an object, got {type(raw).__name__}", rule_index=index)

    try:
        return Rule.model_validate(dict(raw))
    except ValidationError as e:
        field = raw.get('field') if isinstance(raw.get('field'), str) else None
        raise RuleValidationError(
            f"Rule {index} is malformed: {_describe_validation_error(e)}",
            rule_index=index,
            field=field,
        ) from e


def parse_rule_sequence(raw_rules: Optional[Iterable[Any]], strict_gates: bool = True) -> List[Rule]:
    """
    Validate an ordered rule sequence as stored on a campaign

    A gate on the final rule is stripped, since there is no following rule
    to join. A missing gate between two rules is an error when strict_gates
    is set and defaults to AND otherwise.

    Args:
        raw_rules: Stored audienceQuery (list of mappings or Rule models); None means empty
        strict_gates: Reject missing gates between rules

    Returns:
        Validated rules in sequence order

    Raises:
        RuleValidationError: If a rule is malformed
        GatePlacementError: If a gate is missing between two rules in strict mode
    """
    if raw_rules is None:
        return []
    if isinstance(raw_rules, (str, bytes, Mapping)):
        raise RuleValidationError("Rule sequence must be a list of rules")

    try:
        raw_rules = list(raw_rules)
    except TypeError as e:
        raise RuleValidationError(f"Rule sequence must be a list of rules, got {type(raw_rules).__name__}") from e

    rules = [parse_rule(raw, index) for index, raw in enumerate(raw_rules)]
    if not rules:
        return rules

    last = rules[-1]
    if last.logic_gate is not None:
        logger.debug(f"Ignoring trailing {last.logic_gate.value} gate on rule {len(rules) - 1}")
        rules[-1] = last.with_gate(None)

    for index, rule in enumerate(rules[:-1]):
        if rule.logic_gate is None:
            if strict_gates:
                raise GatePlacementError(
                    f"Rule {index} ({rule.render()}) has no logic gate joining it to rule {index + 1}",
                    rule_index=index,
                    field=rule.field,
                )
            logger.debug(f"Rule {index} has no logic gate, defaulting to AND")
            rules[index] = rule.with_gate(LogicGate.AND)

    return rules


def serialize_rules(rules: Iterable[Rule]) -> List[Dict[str, str]]:
    """Canonical persisted form of a rule sequence"""
    return [rule.to_document() for rule in rules]


def render_rules(rules: Iterable[Rule], empty_text: str = DEFAULT_EMPTY_SUMMARY) -> str:
    """
    Render a rule sequence as a human-readable filter description

    Clauses are joined by the gate stored on the preceding rule, e.g.
    'totalSpend > 500 AND visitCount <= 3'.
    """
    rules = list(rules)
    if not rules:
        return empty_text

    parts = [rules[0].render()]
    for previous, rule in zip(rules, rules[1:]):
        gate = previous.logic_gate or LogicGate.AND
        parts.append(gate.value)
        parts.append(rule.render())
    return " ".join(parts)
