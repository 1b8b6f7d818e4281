# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Classification aggregator.

Folds ComplianceResults into per-rule verdict tallies, per account and
across the run, and keeps the NON_COMPLIANT and ERROR results for the
report. Each (account, resource, rule) key is counted at most once. When
two results share a key but disagree, the verdict with the higher
precedence wins, so feeding the same results twice or in any order gives
the same totals.
"""

import logging
import threading
from typing import Iterable

from ..models.compliance import ComplianceResult
from ..models.enums import Verdict
from ..models.report import AccountFailure, RuleSummary

logger = logging.getLogger(__name__)

# Higher wins when results for the same key disagree
VERDICT_PRECEDENCE = {
    Verdict.NOT_APPLICABLE: 0,
    Verdict.COMPLIANT: 1,
    Verdict.NON_COMPLIANT: 2,
    Verdict.ERROR: 3,
}


class ClassificationAggregator:
    """
    Thread-safe accumulator of classification results.

    The orchestrator gives each account its own aggregator and merges
    them in enumeration order once every account task has finished.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._index: dict[tuple[str, str, str], int] = {}
        self._results: list[ComplianceResult] = []
        self._global: dict[str, RuleSummary] = {}
        self._accounts: dict[str, dict[str, RuleSummary]] = {}
        self._failures: list[AccountFailure] = []

    def add(self, result: ComplianceResult) -> bool:
        """
        Record one result.

        A result whose key was already recorded replaces the stored one
        only if its verdict has a higher precedence (see
        ``VERDICT_PRECEDENCE``); the counts move with it.

        Returns:
            True if this is the first result for its (account, resource, rule)
        """
        key = (result.account_id, result.resource_id, result.rule_name)
        with self._lock:
            position = self._index.get(key)
            if position is None:
                self._index[key] = len(self._results)
                self._results.append(result)
                self._count(result, 1)
                return True

            current = self._results[position]
            if VERDICT_PRECEDENCE[result.verdict] > VERDICT_PRECEDENCE[current.verdict]:
                logger.warning(
                    f"Conflicting results for {key}: {current.verdict.value} "
                    f"replaced by {result.verdict.value}"
                )
                self._count(current, -1)
                self._results[position] = result
                self._count(result, 1)
            else:
                logger.debug(f"Ignoring duplicate result for {key}")
        return False

    def extend(self, results: Iterable[ComplianceResult]) -> int:
        """Record several results; returns how many were counted."""
        return sum(1 for result in results if self.add(result))

    def merge(self, other: "ClassificationAggregator") -> None:
        """Fold another aggregator's results and failures into this one."""
        if other is self:
            return
        results, failures = other.snapshot()
        self.extend(results)
        with self._lock:
            self._failures.extend(failures)

    def record_account_failure(
        self,
        account_id: str,
        stage: str,
        error: str,
        display_name: str = "",
        fatal_for_account: bool = True,
    ) -> AccountFailure:
        """Record that an account could not be (fully) scanned."""
        failure = AccountFailure(
            account_id=account_id,
            display_name=display_name,
            stage=stage,
            error=error,
            fatal_for_account=fatal_for_account,
        )
        with self._lock:
            self._failures.append(failure)
        return failure

    def snapshot(self) -> tuple[list[ComplianceResult], list[AccountFailure]]:
        """Copy of the recorded results and failures, in insertion order."""
        with self._lock:
            return list(self._results), list(self._failures)

    def _count(self, result: ComplianceResult, delta: int) -> None:
        for summaries in (self._global, self._accounts.setdefault(result.account_id, {})):
            summary = summaries.get(result.rule_name)
            if summary is None:
                summary = RuleSummary(rule_name=result.rule_name, rule_kind=result.rule_kind)
                summaries[result.rule_name] = summary
            field = result.verdict.value
            setattr(summary, field, getattr(summary, field) + delta)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def rule_summaries(self) -> dict[str, RuleSummary]:
        """Run-wide tallies keyed by rule name."""
        with self._lock:
            return {name: s.model_copy() for name, s in self._global.items()}

    def account_summaries(self, account_id: str) -> dict[str, RuleSummary]:
        """Tallies for one account keyed by rule name."""
        with self._lock:
            return {name: s.model_copy() for name, s in self._accounts.get(account_id, {}).items()}

    @property
    def non_compliant(self) -> list[ComplianceResult]:
        with self._lock:
            return [r for r in self._results if r.verdict == Verdict.NON_COMPLIANT]

    @property
    def errors(self) -> list[ComplianceResult]:
        with self._lock:
            return [r for r in self._results if r.verdict == Verdict.ERROR]

    @property
    def account_failures(self) -> list[AccountFailure]:
        with self._lock:
            return list(self._failures)
