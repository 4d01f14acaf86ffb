"""
Customer field registry for audience rules

This module provides the FieldRegistry class which handles:
- Loading the field mapping configuration from JSON
- Resolving rule field names (and their aliases) to typed descriptors
- Extracting field values from customer documents, models or objects
- Normalizing customer values leniently (missing data becomes None)
- Coercing rule operands strictly at compile time
"""

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from dateutil import parser
from dateutil.relativedelta import relativedelta
from loguru import logger


class FieldType(str, Enum):
    """Value type of a customer field"""
    NUMBER = "number"
    DATE = "date"
    STRING = "string"


_RELATIVE_DATE_PATTERN = re.compile(r'^(\d+)\s+(day|week|month|year)s?\s+ago$', re.IGNORECASE)


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NaT:
        return True
    return isinstance(value, float) and pd.isna(value)


def _to_date(value: datetime) -> date:
    # Aware timestamps compare on their UTC calendar day
    if value.tzinfo is not None and value.utcoffset() is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def parse_date(text: str, default: date) -> date:
    """
    Parse an absolute date string

    Args:
        text: ISO-8601 or any format recognized by dateutil
        default: Date supplying the parts a partial string leaves out
                 (e.g. the year of "June 5")

    Returns:
        Calendar date

    Raises:
        ValueError: If the string is not a recognizable date
    """
    text = text.strip()
    if not text:
        raise ValueError("empty date string")

    try:
        return _to_date(parser.isoparse(text))
    except (ValueError, OverflowError):
        pass

    try:
        return _to_date(parser.parse(text, default=datetime.combine(default, time.min)))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"'{text}' is not a recognized date") from e


def resolve_relative_date(text: str, as_of: date) -> Optional[date]:
    """
    Resolve 'today', 'yesterday' and 'N days|weeks|months|years ago'

    Returns:
        The resolved date, or None if the text is not a relative date

    Raises:
        ValueError: If the offset falls outside the supported date range
    """
    lowered = text.strip().lower()
    if lowered == 'today':
        return as_of
    if lowered == 'yesterday':
        return as_of - timedelta(days=1)

    match = _RELATIVE_DATE_PATTERN.match(lowered)
    if not match:
        return None

    amount = int(match.group(1))
    unit = match.group(2) + 's'
    try:
        return as_of - relativedelta(**{unit: amount})
    except (OverflowError, ValueError) as e:
        raise ValueError(f"'{text}' is out of the supported date range") from e


def normalize_number(value: Any) -> Optional[Decimal]:
    """Normalize a customer value to a finite Decimal, or None"""
    if _is_missing(value) or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None

    if not result.is_finite():
        return None
    return result


def normalize_date(value: Any, as_of: date) -> Optional[date]:
    """Normalize a customer value to a calendar date, or None

    Partial date strings take their missing parts from as_of.
    """
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return _to_date(value)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse_date(value, as_of)
        except ValueError:
            return None
    return None


def normalize_string(value: Any) -> Optional[str]:
    """Normalize a customer value to a string, or None"""
    if _is_missing(value):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return None


@dataclass(frozen=True)
class FieldDescriptor:
    """A typed customer attribute that rules may reference"""

    name: str
    field_type: FieldType
    attribute: str
    aliases: Tuple[str, ...] = ()
    nullable: bool = False

    def raw_value(self, customer: Any) -> Any:
        """Read the unnormalized value from a mapping or an object"""
        if customer is None:
            return None

        if isinstance(customer, Mapping):
            if self.name in customer:
                return customer[self.name]
            for alias in self.aliases:
                if alias in customer:
                    return customer[alias]
            return None

        return getattr(customer, self.attribute, None)

    def extract(self, customer: Any, as_of: date) -> Any:
        """
        Extract the normalized value of this field from a customer

        Args:
            customer: Mapping, Customer model or object with snake_case attributes
            as_of: Reference date completing partial date strings

        Returns:
            Decimal, date or str depending on the field type; None when the
            value is missing or cannot be interpreted
        """
        raw = self.raw_value(customer)
        if self.field_type == FieldType.NUMBER:
            return normalize_number(raw)
        if self.field_type == FieldType.DATE:
            return normalize_date(raw, as_of)
        return normalize_string(raw)

    def coerce_operand(self, text: str, as_of: date, allow_relative_dates: bool = True) -> Any:
        """
        Coerce a rule value to this field's type

        Raises:
            ValueError: If the value cannot be coerced
        """
        if self.field_type == FieldType.NUMBER:
            try:
                number = Decimal(text.strip())
            except InvalidOperation as e:
                raise ValueError(f"'{text}' is not a number") from e
            if not number.is_finite():
                raise ValueError(f"'{text}' is not a finite number")
            return number

        if self.field_type == FieldType.DATE:
            if allow_relative_dates:
                relative = resolve_relative_date(text, as_of)
                if relative is not None:
                    return relative
            return parse_date(text, as_of)

        return text


class FieldRegistry:
    """
    Closed set of customer fields, loaded from the field mapping configuration
    """

    def __init__(self, mapping_config_path: Optional[str] = None):
        """
        Initialize the field registry

        Args:
            mapping_config_path: Path to the field mapping JSON configuration.
                                If None, uses field_mapping.json next to this module.
        """
        if mapping_config_path is None:
            mapping_config_path = os.path.join(os.path.dirname(__file__), 'field_mapping.json')

        self.config_path = mapping_config_path
        self.config = self._load_config()
        self._fields: Dict[str, FieldDescriptor] = {}
        self._lookup: Dict[str, FieldDescriptor] = {}

        for mapping in self.config['mappings']:
            descriptor = self._build_descriptor(mapping)
            self._fields[descriptor.name] = descriptor
            for key in (descriptor.name,) + descriptor.aliases:
                if key in self._lookup:
                    raise ValueError(f"Duplicate field name or alias in mapping: {key}")
                self._lookup[key] = descriptor

    def _load_config(self) -> Dict:
        """Load the field mapping configuration from JSON"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            logger.debug(f"Loaded field mapping configuration from {self.config_path}")
            return config
        except FileNotFoundError:
            logger.error(f"Field mapping configuration not found: {self.config_path}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in field mapping configuration: {e}")
            raise

    @staticmethod
    def _build_descriptor(mapping: Dict[str, Any]) -> FieldDescriptor:
        attribute = mapping.get('inputPath', mapping['ruleField'])
        aliases = list(mapping.get('aliases', []))
        if attribute != mapping['ruleField'] and attribute not in aliases:
            aliases.append(attribute)

        return FieldDescriptor(
            name=mapping['ruleField'],
            field_type=FieldType(mapping['type']),
            attribute=attribute,
            aliases=tuple(aliases),
            nullable=bool(mapping.get('nullable', False)),
        )

    def resolve(self, name: str) -> Optional[FieldDescriptor]:
        """Resolve a rule field name or alias; None if unknown"""
        return self._lookup.get(name)

    def names(self) -> List[str]:
        """Canonical rule field names, in configuration order"""
        return list(self._fields)

    def __contains__(self, name: str) -> bool:
        return name in self._lookup

    def __len__(self) -> int:
        return len(self._fields)


@lru_cache(maxsize=None)
def get_field_registry() -> FieldRegistry:
    """Get the default field registry"""
    return FieldRegistry()
