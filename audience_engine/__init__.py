"""
Campaign Audience Engine

Compiles a campaign's stored audience query (a flat list of field/operator/value
rules joined by AND/OR gates) and selects the matching customers from a
customer snapshot.
"""

__version__ = "1.0.0"

from .core import AudienceEngine
from .compiler import Condition, Expression, ExpressionCompiler, compile_rules
from .evaluator import AudienceEvaluator, evaluate
from .models import AudienceResult, Campaign, Customer, LogicGate, Rule
from .validation import parse_rule_sequence, render_rules, serialize_rules
from .exceptions import (
    AudienceEngineError,
    CompileError,
    ConfigurationError,
    GatePlacementError,
    IncompatibleOperatorError,
    InvalidValueError,
    RuleValidationError,
    UnknownFieldError,
)

__all__ = [
    "AudienceEngine",
    "AudienceEvaluator",
    "AudienceResult",
    "Campaign",
    "Condition",
    "Customer",
    "Expression",
    "ExpressionCompiler",
    "LogicGate",
    "Rule",
    "compile_rules",
    "evaluate",
    "parse_rule_sequence",
    "render_rules",
    "serialize_rules",
    "AudienceEngineError",
    "CompileError",
    "ConfigurationError",
    "GatePlacementError",
    "IncompatibleOperatorError",
    "InvalidValueError",
    "RuleValidationError",
    "UnknownFieldError",
]
