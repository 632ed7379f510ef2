"""Tests for lifecycle.review module."""

import threading
from pathlib import Path

import pytest

from lifecycle.constants import Recommendation, ReviewStatus, Severity, Tier
from lifecycle.exceptions import ConfigurationError, LifecycleError
from lifecycle.review import ReviewAggregator, SubprocessReviewer, consolidate, incomplete_report
from lifecycle.types import ReviewIssue, ReviewReport, Score
from tests.mocks import MockReviewer
from tests.mocks.mock_reviewer import clean_report, report_with

DOMAINS = ["security", "performance", "correctness", "operability"]


class TestConsolidate:
    """Tests for consolidate."""

    @pytest.mark.smoke
    def test_critical_issue_makes_fix_mandatory(self) -> None:
        """Test consolidation of four domains with two critical issues."""
        reports = [
            ReviewReport(
                domain="security",
                score=Score(5, 10),
                status=ReviewStatus.NEEDS_WORK,
                issues=[
                    ReviewIssue("SEC-1", "SQL built by string concatenation", Severity.CRITICAL),
                    ReviewIssue("SEC-2", "Token logged at debug level", Severity.MEDIUM),
                ],
            ),
            ReviewReport(
                domain="performance",
                score=Score(8, 10),
                status=ReviewStatus.ADEQUATE,
                issues=[ReviewIssue("PERF-1", "N+1 query in listing", Severity.CRITICAL)],
            ),
            clean_report("correctness"),
            report_with("operability", Severity.LOW),
        ]

        review = consolidate(reports)

        assert review.score == Score(29, 40)
        assert str(review.score) == "29/40"
        assert review.recommendation is Recommendation.FIX_MANDATORY
        assert not review.recommendation.may_proceed
        assert [i.id for i in review.critical_issues] == ["SEC-1", "PERF-1"]
        assert len(review.issues[Severity.MEDIUM]) == 1
        assert len(review.issues[Severity.LOW]) == 1
        assert review.critical_issues[0].domain == "security"
        assert review.domain_statuses["correctness"] is ReviewStatus.APPROVED

    def test_medium_only_is_fix_optional(self) -> None:
        """Test that non-critical issues allow proceeding with justification."""
        review = consolidate([report_with("security", Severity.MEDIUM), clean_report("performance")])

        assert review.recommendation is Recommendation.FIX_OPTIONAL
        assert review.recommendation.may_proceed

    def test_no_issues_is_go(self) -> None:
        """Test that a clean review is go."""
        review = consolidate([clean_report(d) for d in DOMAINS])

        assert review.is_go
        assert review.score == Score(40, 40)

    def test_incomplete_report(self) -> None:
        """Test the stand-in report for a failed domain."""
        report = incomplete_report("security", "timed out")

        assert report.status is ReviewStatus.NEEDS_WORK
        assert report.issues[0].id == "security-incomplete"
        assert report.issues[0].severity is Severity.CRITICAL


class TestReviewAggregator:
    """Tests for ReviewAggregator class."""

    def test_every_domain_reviewed_at_its_tier(self) -> None:
        """Test that each domain is dispatched once with its tier."""
        reviewer = MockReviewer()
        aggregator = ReviewAggregator(reviewer, DOMAINS)

        review = aggregator.review(["b.py", "a.py"], {"security": Tier.ADVANCED, "performance": Tier.STANDARD})

        assert review.is_go
        assert [r.domain for r in review.reports] == DOMAINS
        assert reviewer.tiers() == {
            "security": Tier.ADVANCED,
            "performance": Tier.STANDARD,
            "correctness": Tier.BASIC,
            "operability": Tier.BASIC,
        }
        assert all(artifacts == ["a.py", "b.py"] for _, _, artifacts in reviewer.calls)

    def test_domains_run_concurrently(self) -> None:
        """Test that all domains are in flight at the same time."""
        barrier = threading.Barrier(len(DOMAINS), timeout=5)

        class BarrierReviewer:
            def review(self, domain: str, tier: Tier, artifacts: list[str]) -> ReviewReport:
                barrier.wait()
                return clean_report(domain)

        review = ReviewAggregator(BarrierReviewer(), DOMAINS).review([])

        assert review.is_go

    def test_reviewer_error_is_critical_issue(self) -> None:
        """Test that a failed domain review blocks with an incomplete issue."""
        aggregator = ReviewAggregator(MockReviewer(errors={"performance"}), DOMAINS)

        review = aggregator.review([])

        assert review.recommendation is Recommendation.FIX_MANDATORY
        assert [i.id for i in review.critical_issues] == ["performance-incomplete"]
        assert review.domain_statuses["performance"] is ReviewStatus.NEEDS_WORK

    def test_wrong_domain_report_is_incomplete(self) -> None:
        """Test that a report for another domain is not accepted."""
        aggregator = ReviewAggregator(MockReviewer(rounds={"security": [clean_report("correctness")]}), DOMAINS)

        review = aggregator.review([])

        assert [i.id for i in review.critical_issues] == ["security-incomplete"]

    def test_no_domains_rejected(self) -> None:
        """Test that at least one domain is required."""
        with pytest.raises(ConfigurationError):
            ReviewAggregator(MockReviewer(), [])


class TestSubprocessReviewer:
    """Tests for SubprocessReviewer class."""

    def _script(self, tmp_path: Path, body: str) -> str:
        script = tmp_path / "review.sh"
        script.write_text("cat > /dev/null\n" + body)
        return f"sh {script}"

    def test_report_from_stdout(self, tmp_path: Path) -> None:
        """Test parsing a JSON report printed by the command."""
        command = self._script(
            tmp_path,
            'echo "{\\"score\\": \\"7/10\\", \\"status\\": \\"adequate\\", \\"issues\\": '
            '[{\\"id\\": \\"X-1\\", \\"description\\": \\"$LIFECYCLE_REVIEW_DOMAIN\\", \\"severity\\": \\"Medium\\"}]}"\n',
        )

        report = SubprocessReviewer(command, cwd=tmp_path).review("security", Tier.STANDARD, ["a.py"])

        assert report.domain == "security"
        assert report.score == Score(7, 10)
        assert report.status is ReviewStatus.ADEQUATE
        assert report.issues[0].severity is Severity.MEDIUM
        assert report.issues[0].domain == "security"
        assert report.issues[0].description == "security"

    def test_non_zero_exit_raises(self, tmp_path: Path) -> None:
        """Test that a failing review command raises."""
        with pytest.raises(LifecycleError, match="exited with code 2"):
            SubprocessReviewer(self._script(tmp_path, "exit 2\n"), cwd=tmp_path).review("security", Tier.BASIC, [])

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        """Test that unparseable output raises."""
        with pytest.raises(LifecycleError, match="not valid JSON"):
            SubprocessReviewer(self._script(tmp_path, "echo nope\n"), cwd=tmp_path).review("security", Tier.BASIC, [])

    def test_errors_surface_as_incomplete_review(self, tmp_path: Path) -> None:
        """Test that the aggregator turns reviewer errors into incomplete reports."""
        reviewer = SubprocessReviewer(self._script(tmp_path, "exit 1\n"), cwd=tmp_path)

        review = ReviewAggregator(reviewer, ["security"]).review([])

        assert [i.id for i in review.critical_issues] == ["security-incomplete"]
