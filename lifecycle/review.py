"""Multi-domain review fan-out and consolidation."""

from __future__ import annotations

import json
import os
import shlex
import subprocess
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Protocol, runtime_checkable

from lifecycle.constants import Recommendation, ReviewStatus, Severity, Tier
from lifecycle.exceptions import ConfigurationError, LifecycleError
from lifecycle.logging import get_logger
from lifecycle.types import ConsolidatedReview, ReviewIssue, ReviewReport, Score

logger = get_logger("review")

INCOMPLETE_SUFFIX = "-incomplete"


@runtime_checkable
class Reviewer(Protocol):
    """Reviews the final artifact set for one domain at a given tier."""

    def review(self, domain: str, tier: Tier, artifacts: Sequence[str]) -> ReviewReport: ...


def incomplete_report(domain: str, reason: str) -> ReviewReport:
    """Stand-in report for a domain whose review did not come back."""
    issue = ReviewIssue(
        id=f"{domain}{INCOMPLETE_SUFFIX}",
        description=f"Review incomplete: {reason}",
        severity=Severity.CRITICAL,
        domain=domain,
    )
    return ReviewReport(domain=domain, score=Score(0, 0), status=ReviewStatus.NEEDS_WORK, issues=[issue])


def is_incomplete(issue: ReviewIssue) -> bool:
    """Whether an issue stands in for a review that did not come back rather than a defect."""
    return issue.id == f"{issue.domain}{INCOMPLETE_SUFFIX}"


def consolidate(reports: Sequence[ReviewReport]) -> ConsolidatedReview:
    """Fan-in: sum scores, bucket issues by severity, roll up statuses.

    Any Critical issue makes the recommendation ``fix_mandatory``; Medium or
    Low issues alone make it ``fix_optional``; no issues at all is ``go``.
    """
    score = Score(0, 0)
    buckets: dict[Severity, list[ReviewIssue]] = {severity: [] for severity in Severity}
    statuses: dict[str, ReviewStatus] = {}

    for report in reports:
        score = score + report.score
        statuses[report.domain] = report.status
        for issue in report.issues:
            if not issue.domain:
                issue.domain = report.domain
            buckets[issue.severity].append(issue)

    if buckets[Severity.CRITICAL]:
        recommendation = Recommendation.FIX_MANDATORY
    elif buckets[Severity.MEDIUM] or buckets[Severity.LOW]:
        recommendation = Recommendation.FIX_OPTIONAL
    else:
        recommendation = Recommendation.GO

    return ConsolidatedReview(
        reports=list(reports),
        score=score,
        issues=buckets,
        domain_statuses=statuses,
        recommendation=recommendation,
    )


class ReviewAggregator:
    """Dispatch one review per domain, all at once, and consolidate.

    There is no retry here. A reviewer that raises or hands back a report
    for the wrong domain is recorded as an incomplete review.
    """

    def __init__(self, reviewer: Reviewer, domains: Sequence[str]) -> None:
        if not domains:
            raise ConfigurationError("At least one review domain is required")
        self._reviewer = reviewer
        self.domains = list(domains)

    def _review_one(self, domain: str, tier: Tier, artifacts: list[str]) -> ReviewReport:
        try:
            report = self._reviewer.review(domain, tier, artifacts)
        except Exception as e:
            logger.error(f"Reviewer for {domain} failed: {e}", extra={"domain": domain})
            return incomplete_report(domain, str(e))
        if report is None:
            return incomplete_report(domain, "no report returned")
        if report.domain != domain:
            return incomplete_report(domain, f"report returned for domain '{report.domain}'")
        return report

    def review(self, artifacts: Sequence[str], tiers: dict[str, Tier] | None = None) -> ConsolidatedReview:
        """Review the artifact set in every domain.

        Args:
            artifacts: Final artifact set
            tiers: Per-domain review tier; domains missing here review at Basic

        Returns:
            The consolidated review
        """
        tiers = tiers or {}
        artifact_list = sorted(artifacts)
        reports: dict[str, ReviewReport] = {}

        with ThreadPoolExecutor(max_workers=len(self.domains), thread_name_prefix="review") as executor:
            futures = {
                executor.submit(self._review_one, domain, tiers.get(domain, Tier.BASIC), artifact_list): domain
                for domain in self.domains
            }
            done, _ = wait(futures)
            for future in done:
                domain = futures[future]
                reports[domain] = future.result()

        ordered = [reports.get(d) or incomplete_report(d, "no report returned") for d in self.domains]
        consolidated = consolidate(ordered)
        logger.info(
            f"Review {consolidated.score}: {consolidated.recommendation.value} "
            f"({len(consolidated.critical_issues)} critical)"
        )
        return consolidated


class SubprocessReviewer:
    """Run an external review command per domain.

    The template may use ``{domain}`` and ``{tier}``. The command receives
    ``{"domain", "tier", "artifacts"}`` as JSON on stdin and must print a
    report object (``score``, ``status``, ``issues``) as JSON on stdout.
    """

    def __init__(self, command: str, cwd: str | Path = ".", timeout: int = 900) -> None:
        if not command.strip():
            raise ConfigurationError("Reviewer command must not be empty")
        self.command = command
        self.cwd = Path(cwd)
        self.timeout = timeout

    def review(self, domain: str, tier: Tier, artifacts: Sequence[str]) -> ReviewReport:
        cmd = [arg.format(domain=domain, tier=tier.label) for arg in shlex.split(self.command)]
        payload = {"domain": domain, "tier": tier.label, "artifacts": list(artifacts)}
        env = os.environ.copy()
        env.update({"LIFECYCLE_REVIEW_DOMAIN": domain, "LIFECYCLE_TIER": tier.label})

        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(payload),
                cwd=str(self.cwd),
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise LifecycleError(f"Reviewer timed out after {self.timeout}s", {"domain": domain}) from e
        except FileNotFoundError as e:
            raise LifecycleError(f"Reviewer command not found: {e.filename}", {"domain": domain}) from e

        if result.returncode != 0:
            raise LifecycleError(
                f"Reviewer exited with code {result.returncode}",
                {"domain": domain, "stderr": result.stderr.strip()[-500:]},
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise LifecycleError("Reviewer output is not valid JSON", {"domain": domain}) from e

        data.setdefault("domain", domain)
        return ReviewReport.from_dict(data)
