"""
Core Audience Engine implementation
"""

import json
import sys
import threading
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Tuple

import pandas as pd
from loguru import logger

from .compiler import Expression, ExpressionCompiler
from .config import AudienceEngineConfig, get_config
from .evaluator import AudienceEvaluator
from .exceptions import AudienceEngineError, CompileError
from .fields import FieldRegistry
from .models import AudienceResult, Campaign
from .validation import parse_rule_sequence, render_rules, serialize_rules


class AudienceEngine:
    """
    Entry point used by the campaign API: compiles audience queries, selects
    audiences from customer snapshots and keeps campaign summaries in sync.
    """

    def __init__(self, config: Optional[AudienceEngineConfig] = None, log_level: Optional[str] = None,
                 field_registry: Optional[FieldRegistry] = None):
        """
        Initialize the Audience Engine

        Args:
            config: Engine configuration. Defaults to the global configuration.
            log_level: Overrides config.log_level (DEBUG, INFO, WARNING, ERROR)
            field_registry: Customer fields rules may reference
        """
        self.config = config or get_config()
        self.log_level = (log_level or self.config.log_level).upper()

        self.compiler = ExpressionCompiler(
            field_registry=field_registry,
            strict_gates=self.config.strict_gates,
            allow_relative_dates=self.config.allow_relative_dates,
            case_sensitive_contains=self.config.case_sensitive_contains,
            empty_summary_text=self.config.empty_summary_text,
        )
        self.evaluator = AudienceEvaluator()

        # Compiled expressions keyed by canonical rules and reference date
        self._expression_cache: Dict[Tuple[str, date], Expression] = {}
        self._cache_lock = threading.Lock()

        if self.config.configure_logging:
            self._configure_logging()

        logger.info(
            f"Audience Engine initialized with {len(self.compiler.field_registry)} customer fields "
            f"(caching {'on' if self.config.enable_caching else 'off'})"
        )

    def _configure_logging(self) -> None:
        logger.remove()
        logger.add(sys.stdout, level=self.log_level, format=self.config.log_format)

        if self.config.log_file:
            logger.add(
                self.config.log_file,
                level=self.log_level,
                rotation=self.config.log_rotation,
                retention=self.config.log_retention,
            )

    def compile(self, rules: Optional[Iterable[Any]], as_of: Optional[date] = None) -> Expression:
        """
        Compile an audience query, reusing a cached expression when possible

        Raises:
            CompileError: If the rule sequence is invalid
        """
        as_of = as_of or date.today()
        if not self.config.enable_caching:
            return self.compiler.compile(rules, as_of)

        parsed = parse_rule_sequence(rules, strict_gates=self.config.strict_gates)
        key = (json.dumps(serialize_rules(parsed), sort_keys=True), as_of)

        with self._cache_lock:
            expression = self._expression_cache.get(key)
        if expression is not None:
            logger.debug(f"Using cached expression for '{expression.summary}'")
            return expression

        expression = self.compiler.compile(parsed, as_of)

        with self._cache_lock:
            self._expression_cache.pop(key, None)
            while len(self._expression_cache) >= self.config.cache_size:
                del self._expression_cache[next(iter(self._expression_cache))]
            self._expression_cache[key] = expression
        return expression

    def evaluate(self, expression: Expression, customers: Iterable[Any]) -> AudienceResult:
        """Apply a compiled expression to a customer snapshot"""
        return self.evaluator.evaluate(expression, customers)

    def build_audience(self, rules: Optional[Iterable[Any]], customers: Iterable[Any],
                       as_of: Optional[date] = None) -> AudienceResult:
        """
        Compile a rule sequence and select its audience

        Args:
            rules: Stored audienceQuery
            customers: In-memory customer snapshot
            as_of: Reference date for relative date values

        Returns:
            AudienceResult

        Raises:
            CompileError: If the rule sequence is invalid; no customer is evaluated
        """
        expression = self.compile(rules, as_of)
        result = self.evaluate(expression, customers)
        logger.info(f"Audience built: {result.matched_count}/{result.total_count} customers match '{result.summary}'")
        return result

    def summarize(self, rules: Optional[Iterable[Any]]) -> str:
        """Human-readable description of a rule sequence"""
        parsed = parse_rule_sequence(rules, strict_gates=self.config.strict_gates)
        return render_rules(parsed, self.config.empty_summary_text)

    def check(self, rules: Optional[Iterable[Any]], as_of: Optional[date] = None) -> Dict[str, Any]:
        """Report every problem in a rule sequence without raising"""
        return self.compiler.check(rules, as_of)

    def create_campaign(self, name: str, audience_query: Optional[Iterable[Any]],
                        created_at: Optional[datetime] = None) -> Campaign:
        """
        Create a campaign with a validated audience query and its summary

        Raises:
            CompileError: If the audience query is invalid
            AudienceEngineError: If the campaign itself is invalid
        """
        expression = self.compile(audience_query)

        data = {
            'name': name,
            'audience_query': expression.rules,
            'summary': expression.summary,
        }
        if created_at is not None:
            data['created_at'] = created_at

        try:
            campaign = Campaign(**data)
        except ValueError as e:
            raise AudienceEngineError(f"Invalid campaign: {e}") from e

        logger.info(f"Campaign '{campaign.name}' created with audience '{campaign.summary}'")
        return campaign

    def load_campaign(self, document: Dict[str, Any]) -> Campaign:
        """
        Rebuild a campaign from its persisted document

        The stored audience query is revalidated; the summary is recomputed
        when the document has none.

        Raises:
            CompileError: If the stored audience query is invalid
        """
        document = dict(document)
        raw_query = document.pop('audienceQuery', None)
        snake_query = document.pop('audience_query', None)
        if raw_query is None:
            raw_query = snake_query
        rules = parse_rule_sequence(raw_query, strict_gates=self.config.strict_gates)

        try:
            campaign = Campaign.from_document({**document, 'audienceQuery': rules})
        except ValueError as e:
            raise AudienceEngineError(f"Invalid campaign document: {e}") from e

        if not campaign.summary:
            campaign = campaign.with_summary(render_rules(rules, self.config.empty_summary_text))
        return campaign

    def compute_audience(self, campaign: Campaign, customers: Iterable[Any],
                         as_of: Optional[date] = None) -> AudienceResult:
        """
        Compute the current audience of a stored campaign

        Each call is an independent computation over the given snapshot; the
        campaign is not modified.
        """
        try:
            expression = self.compile(campaign.audience_query, as_of)
        except CompileError:
            logger.error(f"Campaign '{campaign.name}' has an invalid audience query")
            raise

        result = self.evaluate(expression, customers)
        logger.info(f"Campaign '{campaign.name}': {result.matched_count}/{result.total_count} customers in audience")
        return result

    def filter_dataframe(self, rules: Optional[Iterable[Any]], frame: pd.DataFrame,
                         as_of: Optional[date] = None) -> pd.DataFrame:
        """Compile a rule sequence and filter a DataFrame of customer rows"""
        expression = self.compile(rules, as_of)
        return self.evaluator.evaluate_dataframe(expression, frame)

    def clear_cache(self) -> None:
        """Drop all cached expressions"""
        with self._cache_lock:
            self._expression_cache.clear()
        logger.debug("Expression cache cleared")
