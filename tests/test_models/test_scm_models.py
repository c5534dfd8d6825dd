"""Tests for SCM data models."""

from agentorchestrator.models.scm import (
    AutomatedComment,
    CheckStatus,
    MergeReadiness,
    PRState,
    ReviewComment,
    ReviewDecision,
)


class TestScmEnums:
    def test_values(self):
        assert PRState("merged") == PRState.MERGED
        assert ReviewDecision("changes_requested") == ReviewDecision.CHANGES_REQUESTED
        assert CheckStatus.FAILED.value == "failed"


class TestComments:
    def test_review_comment_defaults(self):
        c = ReviewComment(id="c1", author="alice", body="rename this")
        assert c.path == ""
        assert c.line is None
        assert not c.is_resolved

    def test_automated_comment_default_severity(self):
        c = AutomatedComment(id="b1", bot_name="cursor[bot]", body="possible bug")
        assert c.severity == "info"


class TestMergeReadiness:
    def test_blockers_default_empty(self):
        r = MergeReadiness(mergeable=True, ci_passing=True, approved=True)
        assert r.blockers == ()
        assert r.no_conflicts
