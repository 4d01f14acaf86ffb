"""
Audience evaluation against customer snapshots
"""

from typing import Any, Iterable

import pandas as pd
from loguru import logger

from .compiler import Expression
from .exceptions import AudienceEngineError
from .models import AudienceResult


class AudienceEvaluator:
    """
    Applies a compiled Expression to a customer snapshot

    The filter is stable: matched customers keep their input order. Customer
    data problems (missing, null or malformed fields) make a rule not match
    for that customer and never raise.
    """

    def evaluate(self, expression: Expression, customers: Iterable[Any]) -> AudienceResult:
        """
        Select the audience of a compiled expression

        Args:
            expression: Result of ExpressionCompiler.compile
            customers: In-memory customer snapshot (documents, Customer models or objects)

        Returns:
            AudienceResult with matched customers, counts and the filter summary
        """
        self._require_expression(expression)

        matched = []
        total = 0
        for customer in customers:
            total += 1
            if expression.matches(customer):
                matched.append(customer)

        logger.debug(f"Audience '{expression.summary}': {len(matched)} of {total} customers matched")

        return AudienceResult(
            customers=matched,
            matched_count=len(matched),
            total_count=total,
            summary=expression.summary,
        )

    def evaluate_dataframe(self, expression: Expression, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Filter a DataFrame of customer rows

        Columns are read by rule field name (camelCase) or attribute name
        (snake_case). The returned frame keeps the original index and row order.
        """
        self._require_expression(expression)

        if frame.empty or expression.is_match_all:
            return frame.copy()

        records = frame.to_dict(orient='records')
        mask = [expression.matches(record) for record in records]
        result = frame.loc[mask].copy()

        logger.debug(f"Audience '{expression.summary}': {len(result)} of {len(frame)} rows matched")
        return result

    @staticmethod
    def _require_expression(expression: Any) -> None:
        if not isinstance(expression, Expression):
            raise AudienceEngineError(
                f"Expected a compiled Expression, got {type(expression).__name__}; "
                f"compile the rule sequence before evaluating it"
            )


def evaluate(expression: Expression, customers: Iterable[Any]) -> AudienceResult:
    """Evaluate an expression with a one-off AudienceEvaluator"""
    return AudienceEvaluator().evaluate(expression, customers)
