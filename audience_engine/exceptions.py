"""
Custom exceptions for the Audience Engine
"""

from typing import Optional


class AudienceEngineError(Exception):
    """Base exception for all audience engine errors"""
    pass


class ConfigurationError(AudienceEngineError):
    """Raised when the engine configuration is invalid"""
    pass


class CompileError(AudienceEngineError):
    """
    Raised when a rule sequence cannot be compiled into an expression.

    Every compile error carries a stable ``code`` plus the position and field
    of the offending rule, so the API layer can point the user at it.
    """

    code = "CompileError"

    def __init__(self, message: str, rule_index: Optional[int] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.rule_index = rule_index
        self.field = field

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'rule_index': self.rule_index,
            'field': self.field,
        }


class RuleValidationError(CompileError):
    """Raised when a rule is malformed (empty parts, unknown operator or gate token)"""
    code = "MalformedRule"


class GatePlacementError(CompileError):
    """Raised when a logic gate is missing between two rules"""
    code = "MalformedGate"


class UnknownFieldError(CompileError):
    """Raised when a rule references a field outside the customer schema"""
    code = "UnknownField"


class InvalidValueError(CompileError):
    """Raised when a rule value cannot be coerced to its field type"""
    code = "InvalidValue"


class IncompatibleOperatorError(CompileError):
    """Raised when an operator does not apply to the field type"""
    code = "IncompatibleOperator"
