"""
Data models for the Audience Engine
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .operators import OperatorDescriptor, operator_symbols, resolve_operator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(v: Any) -> bool:
    return v is None or v is pd.NaT or v == "" or (isinstance(v, float) and pd.isna(v))


class LogicGate(str, Enum):
    """Combinator joining a rule to the next rule in sequence order"""
    AND = "AND"
    OR = "OR"


class Rule(BaseModel):
    """One audience condition, as stored in a campaign's audienceQuery"""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra='ignore')

    field: str
    operator: str
    value: str
    logic_gate: Optional[LogicGate] = Field(default=None, alias="logicGate")

    @field_validator('field', 'operator', 'value', mode='before')
    @classmethod
    def convert_to_string(cls, v):
        # Values arrive as JSON numbers from some clients
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('field', 'operator', 'value')
    @classmethod
    def require_non_empty(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} must not be empty")
        return v

    @field_validator('operator')
    @classmethod
    def require_known_operator(cls, v: str) -> str:
        if resolve_operator(v) is None:
            raise ValueError(f"unknown operator '{v}' (expected one of: {', '.join(operator_symbols())})")
        return v

    @field_validator('logic_gate', mode='before')
    @classmethod
    def parse_gate(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @property
    def operator_descriptor(self) -> OperatorDescriptor:
        return resolve_operator(self.operator)

    def render(self) -> str:
        """Human-readable clause, e.g. 'totalSpend > 500'"""
        return f"{self.field} {self.operator_descriptor.symbol} {self.value}"

    def to_document(self) -> Dict[str, str]:
        """Canonical persisted form"""
        document = {
            'field': self.field,
            'operator': self.operator_descriptor.symbol,
            'value': self.value,
        }
        if self.logic_gate is not None:
            document['logicGate'] = self.logic_gate.value
        return document

    def with_gate(self, gate: Optional[LogicGate]) -> "Rule":
        return self.model_copy(update={'logic_gate': gate})


class Customer(BaseModel):
    """Customer record as stored by the persistence layer"""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    name: str
    email: str
    phone: str
    total_spend: Decimal = Field(default=Decimal('0'), alias="totalSpend")
    last_order_date: Optional[datetime] = Field(default=None, alias="lastOrderDate")
    visit_count: int = Field(default=0, alias="visitCount")
    created_at: datetime = Field(default_factory=_utc_now, alias="createdAt")

    @field_validator('name', 'email', 'phone', mode='before')
    @classmethod
    def convert_to_string(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('total_spend', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        if _is_blank(v):
            return Decimal('0')
        if isinstance(v, (int, float, str)) and not isinstance(v, bool):
            try:
                return Decimal(str(v))
            except InvalidOperation:
                raise ValueError(f"totalSpend is not a number: {v!r}")
        return v

    @field_validator('visit_count', mode='before')
    @classmethod
    def parse_count(cls, v):
        if _is_blank(v):
            return 0
        return v

    @field_validator('last_order_date', mode='before')
    @classmethod
    def parse_optional_date(cls, v):
        if _is_blank(v):
            return None
        return v

    @field_validator('created_at', mode='before')
    @classmethod
    def default_created_at(cls, v):
        if _is_blank(v):
            return _utc_now()
        return v


class Campaign(BaseModel):
    """
    Campaign with its embedded audience query.

    Campaigns are frozen: a changed audience query or recomputed summary
    produces a new Campaign rather than rewriting an existing one.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra='ignore')

    name: str
    audience_query: Tuple[Rule, ...] = Field(default=(), alias="audienceQuery")
    created_at: datetime = Field(default_factory=_utc_now, alias="createdAt")
    summary: Optional[str] = None

    @field_validator('name')
    @classmethod
    def require_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator('audience_query', mode='before')
    @classmethod
    def default_query(cls, v):
        if v is None:
            return ()
        return v

    @field_validator('created_at', mode='before')
    @classmethod
    def default_created_at(cls, v):
        if _is_blank(v):
            return _utc_now()
        return v

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Campaign":
        """Build a campaign from its persisted document"""
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        """Canonical persisted form"""
        document = {
            'name': self.name,
            'audienceQuery': [rule.to_document() for rule in self.audience_query],
            'createdAt': self.created_at,
        }
        if self.summary is not None:
            document['summary'] = self.summary
        return document

    def with_summary(self, summary: str) -> "Campaign":
        return self.model_copy(update={'summary': summary})


class AudienceResult(BaseModel):
    """Customers matched by a compiled audience expression"""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, frozen=True)

    customers: List[Any] = Field(default_factory=list)
    matched_count: int = Field(alias="matchedCount")
    total_count: int = Field(alias="totalCount")
    summary: str

    @property
    def match_rate(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.matched_count / self.total_count
