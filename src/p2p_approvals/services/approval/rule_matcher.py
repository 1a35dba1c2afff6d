"""Decision-table rule matcher.

Selects the approval path for a transaction:

1. Load active rules of the transaction type effective on the date.
2. Evaluate each populated criterion; unset criteria are wildcards.
3. Rank matching rules by specificity (desc), then priority (asc), then id.
4. Take the first candidate whose path is active and has active steps.
5. Otherwise use the configured fallback path, or report no match.

The matcher only reads; it never writes transaction state.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.models.routing import DecisionRule
from p2p_approvals.repositories.routing import (
    ApprovalPathRepository,
    DecisionRuleRepository,
    PathStepRepository,
)
from p2p_approvals.services.approval.schemas import (
    CriterionCheck,
    DebugMatchResult,
    MatchContext,
    MatchExplanation,
    MatchResult,
    PathSummary,
    RuleEvaluation,
    RuleSummary,
    StepDetail,
)

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "No matching rule - using fallback path"
FALLBACK_DETAIL = "Transaction did not match any decision rules"

# Specificity weights per non-wildcard criterion
SPECIFICITY_WEIGHTS = {
    "subsidiaries": 1,
    "departments": 2,
    "locations": 1,
    "risk": 1,
    "exception_types": 1,
}

# Set criteria evaluated after risk/exception: (label, rule attr, context attr)
_SET_CRITERIA: list[tuple[str, str, str]] = [
    ("Customer", "customers", "customer"),
    ("Sales Rep", "sales_reps", "sales_rep"),
    ("Project", "projects", "project"),
    ("Class", "classes", "class_code"),
    ("Custom Segment", "custom_segments", "custom_segment"),
]


def format_currency(amount: Decimal | int | float | None) -> str:
    """Format an amount as US dollars, e.g. $1,200.00."""
    return f"${Decimal(amount or 0):,.2f}"


def format_amount_range(amount_min: Decimal | None, amount_max: Decimal | None) -> str:
    """Format an inclusive amount range; no maximum means open-ended."""
    if amount_max is None:
        return f"{format_currency(amount_min)}+"
    return f"{format_currency(amount_min)} - {format_currency(amount_max)}"


def format_risk_range(risk_min: int | None, risk_max: int | None) -> str:
    """Format a risk-score range."""
    parts = []
    if risk_min is not None:
        parts.append(f">= {risk_min}")
    if risk_max is not None:
        parts.append(f"<= {risk_max}")
    return " and ".join(parts) or "Any"


def _one_of(values: list[str]) -> str:
    return "One of: " + ", ".join(values)


def _rule_values(values: list[Any] | None) -> list[str]:
    """Normalize a multi-valued rule criterion to trimmed strings."""
    return [str(v).strip() for v in (values or []) if str(v).strip()]


def calculate_specificity(rule: DecisionRule) -> int:
    """Score how narrow a rule is.

    @param rule - Decision rule
    @returns Specificity score (higher = narrower)
    """
    score = 0
    if _rule_values(rule.subsidiaries):
        score += SPECIFICITY_WEIGHTS["subsidiaries"]
    if _rule_values(rule.departments):
        score += SPECIFICITY_WEIGHTS["departments"]
    if _rule_values(rule.locations):
        score += SPECIFICITY_WEIGHTS["locations"]
    if rule.risk_min is not None or rule.risk_max is not None:
        score += SPECIFICITY_WEIGHTS["risk"]
    if _rule_values(rule.exception_types):
        score += SPECIFICITY_WEIGHTS["exception_types"]
    return score


def evaluate_rule(rule: DecisionRule, context: MatchContext) -> RuleEvaluation:
    """Evaluate every populated criterion of a rule against a context.

    Department and location constraints apply only when the transaction
    carries a value. Any other declared criterion with no value fails.

    @param rule - Decision rule
    @param context - Transaction context
    @returns Evaluation with per-criterion checks in evaluation order
    """
    checks: list[CriterionCheck] = []

    def check_set(label: str, allowed: list[str], actual: str | None) -> None:
        checks.append(CriterionCheck(
            field=label,
            passed=actual is not None and str(actual) in allowed,
            expected=_one_of(allowed),
            actual=str(actual) if actual is not None else "None",
        ))

    # Amount is always checked
    amount_min = rule.amount_min if rule.amount_min is not None else Decimal("0")
    amount_max = rule.amount_max
    amount = Decimal(context.amount)
    checks.append(CriterionCheck(
        field="Amount",
        passed=amount >= amount_min and (amount_max is None or amount <= amount_max),
        expected=format_amount_range(amount_min, amount_max),
        actual=format_currency(amount),
    ))

    subsidiaries = _rule_values(rule.subsidiaries)
    if subsidiaries:
        check_set("Subsidiary", subsidiaries, context.subsidiary)

    departments = _rule_values(rule.departments)
    if departments and context.department is not None:
        check_set("Department", departments, context.department)

    locations = _rule_values(rule.locations)
    if locations and context.location is not None:
        check_set("Location", locations, context.location)

    if rule.currency:
        checks.append(CriterionCheck(
            field="Currency",
            passed=context.currency is not None
            and context.currency.upper() == rule.currency.upper(),
            expected=rule.currency,
            actual=context.currency or "None",
        ))

    if rule.risk_min is not None or rule.risk_max is not None:
        risk = context.risk_score
        passed = risk is not None
        if passed and rule.risk_min is not None and risk < rule.risk_min:
            passed = False
        if passed and rule.risk_max is not None and risk > rule.risk_max:
            passed = False
        checks.append(CriterionCheck(
            field="Risk Score",
            passed=passed,
            expected=format_risk_range(rule.risk_min, rule.risk_max),
            actual=str(risk) if risk is not None else "N/A",
        ))

    exception_types = _rule_values(rule.exception_types)
    if exception_types:
        check_set("Exception", exception_types, context.exception_type or None)

    for label, rule_attr, context_attr in _SET_CRITERIA:
        allowed = _rule_values(getattr(rule, rule_attr))
        if allowed:
            check_set(label, allowed, getattr(context, context_attr))

    return RuleEvaluation(
        rule_id=rule.id,
        rule_name=rule.name or rule.code or rule.id,
        priority=rule.priority,
        matches=all(check.passed for check in checks),
        specificity=calculate_specificity(rule),
        checks=checks,
        path_id=rule.path_id,
    )


def build_explanation(rule: DecisionRule, evaluation: RuleEvaluation) -> MatchExplanation:
    """Summarize why a rule matched, listing passing checks in order.

    @param rule - Matched rule
    @param evaluation - Its evaluation
    @returns Explanation
    """
    details = [
        f"✓ {check.field}: {check.actual} (matches {check.expected})"
        for check in evaluation.checks
        if check.passed
    ]
    summary = f'Matched rule "{rule.name or rule.code}" (Priority {rule.priority})'
    return MatchExplanation(summary=summary, details=details)


def rank_key(evaluation: RuleEvaluation) -> tuple[int, int, str]:
    """Sort key: specificity dominates, priority breaks ties, id is stable."""
    return (-evaluation.specificity, evaluation.priority, evaluation.rule_id)


class RuleMatcher:
    """Matches transactions to approval paths.

    Uses Repository pattern for rule, path and step lookups.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: WorkflowConfig,
        today: Callable[[], date] = date.today,
    ):
        """Initialize rule matcher.

        @param session - Database session
        @param config - Workflow configuration (fallback path)
        @param today - Clock used for effective-date filtering
        """
        self.config = config
        self._today = today
        self.rule_repo = DecisionRuleRepository(session)
        self.path_repo = ApprovalPathRepository(session)
        self.step_repo = PathStepRepository(session)

    async def find_match(
        self, context: MatchContext, *, as_of: date | None = None
    ) -> MatchResult | None:
        """Select the approval path for a transaction.

        @param context - Transaction context
        @param as_of - Effective date (defaults to today)
        @returns MatchResult, fallback MatchResult, or None when nothing applies
        """
        _, result = await self._select(context, as_of or self._today(), trace=False)
        if result is None:
            logger.warning(
                f"No matching rule or fallback for {context.transaction_type.value} "
                f"amount={context.amount}"
            )
        return result

    async def debug_match(
        self, context: MatchContext, *, as_of: date | None = None
    ) -> DebugMatchResult:
        """Evaluate every candidate rule and report the full trace.

        @param context - Transaction context
        @param as_of - Effective date (defaults to today)
        @returns Per-rule evaluations plus the final selection
        """
        as_of = as_of or self._today()
        evaluations, result = await self._select(context, as_of, trace=True)
        return DebugMatchResult(
            context=context,
            evaluated_on=as_of,
            evaluations=evaluations,
            result=result,
        )

    async def _select(
        self, context: MatchContext, as_of: date, *, trace: bool
    ) -> tuple[list[RuleEvaluation], MatchResult | None]:
        """Evaluate rules and resolve the winning usable path.

        @param context - Transaction context
        @param as_of - Effective date
        @param trace - Check path usability of every matching rule
        @returns (evaluations in load order, selection or None)
        """
        rules = await self.rule_repo.get_active_for_type(
            context.transaction_type.value, as_of
        )
        rules_by_id = {rule.id: rule for rule in rules}
        evaluations = [evaluate_rule(rule, context) for rule in rules]
        candidates = sorted((e for e in evaluations if e.matches), key=rank_key)

        selected: MatchResult | None = None
        for evaluation in candidates:
            loaded = await self.load_path(evaluation.path_id)
            evaluation.path_usable = loaded is not None
            if loaded is None:
                logger.warning(
                    f"Rule {evaluation.rule_id} targets unusable path "
                    f"{evaluation.path_id}, trying next candidate"
                )
                continue
            if selected is None:
                rule = rules_by_id[evaluation.rule_id]
                path, steps = loaded
                selected = MatchResult(
                    rule=RuleSummary(
                        id=rule.id,
                        code=rule.code,
                        name=rule.name,
                        priority=rule.priority,
                    ),
                    path=path,
                    steps=steps,
                    explanation=build_explanation(rule, evaluation),
                )
            if not trace:
                break

        if selected is None:
            selected = await self._fallback_result()
        elif selected.rule:
            logger.info(
                f"Matched rule {selected.rule.id} -> path {selected.path.id} "
                f"for {context.transaction_type.value}"
            )
        return evaluations, selected

    async def _fallback_result(self) -> MatchResult | None:
        """Build the fallback selection, if a usable fallback is configured.

        @returns Fallback MatchResult or None
        """
        if not self.config.fallback_path_id:
            return None
        loaded = await self.load_path(self.config.fallback_path_id)
        if loaded is None:
            logger.error(
                f"Configured fallback path {self.config.fallback_path_id} "
                "is missing, inactive or has no active steps"
            )
            return None
        path, steps = loaded
        logger.info(f"Using fallback path {path.id}")
        return MatchResult(
            rule=None,
            path=path,
            steps=steps,
            explanation=MatchExplanation(
                summary=FALLBACK_SUMMARY, details=[FALLBACK_DETAIL]
            ),
            is_fallback=True,
        )

    async def load_path(
        self, path_id: str | None
    ) -> tuple[PathSummary, list[StepDetail]] | None:
        """Load an active path with its active steps.

        @param path_id - Path ID
        @returns (path, steps) or None if missing, inactive or without steps
        """
        path = await self.path_repo.get_active(path_id)
        if path is None:
            return None
        steps = await self.list_path_steps(path.id)
        if not steps:
            return None
        return PathSummary.model_validate(path), steps

    async def list_path_steps(self, path_id: str) -> list[StepDetail]:
        """List a path's active steps in ascending sequence.

        @param path_id - Path ID
        @returns Step details
        """
        steps = await self.step_repo.get_active_steps(path_id)
        return [StepDetail.model_validate(step) for step in steps]
