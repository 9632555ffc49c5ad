"""
Agent Orchestrator - System Audit Tests
=======================================

Recommendation aggregation over seeded stage results for February 2025.
"""

from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from src.core.agents import audit as audit_module
from src.core.agents.audit import (
    AuditStatus,
    GroupOutcome,
    _recommendation_items,
    audit_status,
    build_recommendation,
    parse_recommendations,
)
from src.core.agents.errors import TransportError
from src.core.agents.periods import Period
from src.core.agents.store import new_result
from src.core.models import (
    Recommendation,
    ResultStatus,
    ReviewStatus,
    RunType,
    StageName,
    StageResult,
)
from tests.conftest import DEFAULT_OUTPUTS, REFERENCE, count_rows, create_account, fetch_rows

FEBRUARY = Period(date(2025, 2, 1), date(2025, 2, 28))
JANUARY = Period(date(2025, 1, 1), date(2025, 1, 31))


async def seed_results(session, account):
    """Two summary rows and one opportunity row inside February, plus noise."""
    other = await create_account(session, "bright-smiles.com")
    session.add_all([
        new_result(account, StageName.SUMMARY, FEBRUARY, RunType.MONTHLY, output_payload={"summary": "A"}),
        new_result(other, StageName.SUMMARY, FEBRUARY, RunType.MONTHLY, output_payload={"summary": "B"}),
        new_result(account, StageName.OPPORTUNITY, FEBRUARY, RunType.MONTHLY, output_payload=[{"title": "C"}]),
        # Excluded: failed run, other month, earlier audit output
        new_result(account, StageName.CRO_OPTIMIZER, FEBRUARY, RunType.MONTHLY,
                   status=ResultStatus.ERROR, error_message="boom"),
        new_result(account, StageName.REFERRAL_ENGINE, JANUARY, RunType.MONTHLY, output_payload={"r": 1}),
        new_result(None, StageName.GUARDIAN, Period(date(2025, 2, 1), date(2025, 2, 14)),
                   RunType.AUDIT, output_payload=[{"x": 1}]),
    ])
    await session.commit()


def reviewed(stage: StageName, status: ReviewStatus, title: str, days_ago: int) -> Recommendation:
    return Recommendation(
        source_stage_type=StageName.GUARDIAN,
        audited_stage=stage,
        title=title,
        review_status=status,
        reviewed_at=datetime(2025, 2, 20, tzinfo=timezone.utc) - timedelta(days=days_ago),
    )


# ==========================================================================
# Audit Run
# ==========================================================================

class TestRunAudit:
    async def test_groups_audited_in_stage_order(self, aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)

        report = await aggregator.run_audit(reference=REFERENCE)

        assert report.status == AuditStatus.SUCCESS
        assert report.period == {"start": "2025-02-01", "end": "2025-02-28"}
        assert agent_client.stages_called() == [
            "guardian", "governance_sentinel", "guardian", "governance_sentinel",
        ]
        groups = [c["additional_data"]["agent_under_test"] for c in agent_client.calls_for("guardian")]
        assert groups == ["opportunity", "summary"]
        assert [(g.stage, g.results) for g in report.groups] == [("opportunity", 1), ("summary", 2)]

    async def test_payload_contains_group_outputs(self, aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)

        await aggregator.run_audit(reference=REFERENCE)

        payload = agent_client.calls_for("governance_sentinel")[1]
        assert payload["accountId"] is None
        assert payload["dateRange"] == {"start": "2025-02-01", "end": "2025-02-28"}
        outputs = payload["additional_data"]["outputs"]
        assert sorted(o["output"]["summary"] for o in outputs) == ["A", "B"]
        assert payload["additional_data"]["history"] == {"passed": [], "rejected": []}

    async def test_writes_two_rows_and_recommendations(self, aggregator, account, db_session):
        await seed_results(db_session, account)

        report = await aggregator.run_audit(reference=REFERENCE)

        rows = await fetch_rows(
            db_session,
            StageResult,
            StageResult.period_start == FEBRUARY.start,
            StageResult.period_end == FEBRUARY.end,
            StageResult.run_type == RunType.AUDIT,
        )
        assert sorted(r.stage.value for r in rows) == ["governance_sentinel", "guardian"]
        assert all(r.account_id is None for r in rows)
        assert all(len(r.output_payload) == 2 for r in rows)

        assert report.recommendations_created == 4
        recs = await fetch_rows(db_session, Recommendation)
        assert len(recs) == 4
        governance = [r for r in recs if r.source_stage_type == StageName.GOVERNANCE_SENTINEL]
        assert {r.audited_stage for r in governance} == {StageName.OPPORTUNITY, StageName.SUMMARY}
        assert governance[0].title == "Output follows the tone rules"
        assert all(r.severity == 1 for r in recs)
        assert all(r.review_status is None for r in recs)

    async def test_history_is_limited_and_newest_first(self, make_aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)
        db_session.add_all([
            reviewed(StageName.SUMMARY, ReviewStatus.PASS, "older pass", days_ago=5),
            reviewed(StageName.SUMMARY, ReviewStatus.PASS, "newer pass", days_ago=1),
            reviewed(StageName.SUMMARY, ReviewStatus.REJECT, "rejected", days_ago=2),
            reviewed(StageName.OPPORTUNITY, ReviewStatus.PASS, "other stage", days_ago=1),
        ])
        await db_session.commit()

        await make_aggregator(history_limit=1).run_audit(reference=REFERENCE)

        history = agent_client.calls_for("guardian")[1]["additional_data"]["history"]
        assert [h["title"] for h in history["passed"]] == ["newer pass"]
        assert [h["title"] for h in history["rejected"]] == ["rejected"]
        assert history["passed"][0]["reviewStatus"] == "PASS"

    async def test_failed_group_does_not_block_others(self, aggregator, account, db_session, agent_client):
        def guardian(payload):
            if payload["additional_data"]["agent_under_test"] == "summary":
                raise TransportError("guardian timed out")
            return [{"recommendations": [{"title": "Looks fine"}]}]

        agent_client.responses["guardian"] = guardian
        await seed_results(db_session, account)

        report = await aggregator.run_audit(reference=REFERENCE)

        assert report.status == AuditStatus.PARTIAL
        assert agent_client.stages_called().count("guardian") == 1 + 3
        summary_group = report.groups[1]
        assert (summary_group.guardian, summary_group.governance) == (False, True)

        guardian_id = UUID(report.guardian_result_id)
        guardian_row = (await fetch_rows(db_session, StageResult, StageResult.id == guardian_id))[0]
        assert guardian_row.output_payload[1]["success"] is False
        assert "guardian timed out" in guardian_row.output_payload[1]["error"]
        assert report.recommendations_created == 3

    async def test_parse_failure_does_not_fail_audit(self, aggregator, account, db_session, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("parser exploded")

        monkeypatch.setattr(audit_module, "parse_recommendations", broken)
        await seed_results(db_session, account)

        report = await aggregator.run_audit(reference=REFERENCE)

        assert report.status == AuditStatus.SUCCESS
        assert report.recommendations_created == 0
        assert await count_rows(db_session, StageResult, StageResult.run_type == RunType.AUDIT) == 3
        assert await count_rows(db_session, Recommendation) == 0

    async def test_second_audit_is_skipped(self, aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)
        first = await aggregator.run_audit(reference=REFERENCE)
        calls = len(agent_client.calls)

        second = await aggregator.run_audit(reference=REFERENCE)

        assert second.status == AuditStatus.SKIPPED
        assert second.reason == "already_exists"
        assert second.guardian_result_id == first.guardian_result_id
        assert len(agent_client.calls) == calls

    async def test_failed_audit_can_be_rerun(self, aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)
        agent_client.responses["guardian"] = TransportError("guardian down")
        agent_client.responses["governance_sentinel"] = TransportError("sentinel down")

        first = await aggregator.run_audit(reference=REFERENCE)

        assert first.status == AuditStatus.FAILED
        assert first.recommendations_created == 0
        errors = await fetch_rows(
            db_session, StageResult,
            StageResult.run_type == RunType.AUDIT,
            StageResult.status == ResultStatus.ERROR,
        )
        assert sorted(r.stage.value for r in errors) == ["governance_sentinel", "guardian"]
        assert errors[0].error_message == "every audit group call failed"

        agent_client.responses["guardian"] = DEFAULT_OUTPUTS["guardian"]
        agent_client.responses["governance_sentinel"] = DEFAULT_OUTPUTS["governance_sentinel"]
        second = await aggregator.run_audit(reference=REFERENCE)

        assert second.status == AuditStatus.SUCCESS
        assert second.guardian_result_id != first.guardian_result_id
        assert second.recommendations_created == 4

    async def test_cross_month_daily_row_belongs_to_closing_month(self, aggregator, account, db_session, agent_client):
        boundary = Period(date(2025, 2, 28), date(2025, 3, 1))
        db_session.add(new_result(account, StageName.PROOFLINE, boundary, RunType.DAILY, output_payload={"p": 1}))
        await db_session.commit()

        february = await aggregator.run_audit(start=FEBRUARY.start, end=FEBRUARY.end)
        march = await aggregator.run_audit(start=date(2025, 3, 1), end=date(2025, 3, 31))

        assert february.status == AuditStatus.SKIPPED
        assert february.reason == "no_results"
        assert [g.stage for g in march.groups] == ["proofline"]

    async def test_no_results(self, aggregator, agent_client, db_session):
        report = await aggregator.run_audit(reference=REFERENCE)

        assert report.status == AuditStatus.SKIPPED
        assert report.reason == "no_results"
        assert agent_client.calls == []
        assert await count_rows(db_session, StageResult) == 0

    async def test_explicit_window(self, aggregator, account, db_session, agent_client):
        await seed_results(db_session, account)

        report = await aggregator.run_audit(start=JANUARY.start, end=JANUARY.end)

        assert report.period == {"start": "2025-01-01", "end": "2025-01-31"}
        assert [g.stage for g in report.groups] == ["referral_engine"]

    async def test_completion_notification(self, aggregator, account, db_session, notifier):
        await seed_results(db_session, account)

        await aggregator.run_audit(reference=REFERENCE)

        assert notifier.types() == ["audit_completed"]
        assert notifier.events[0].data["recommendations"] == 4

    async def test_report_as_dict(self, aggregator, account, db_session):
        await seed_results(db_session, account)

        data = (await aggregator.run_audit(reference=REFERENCE)).as_dict()

        assert data["status"] == "success"
        assert data["groups"][0] == {
            "stage": "opportunity",
            "results": 1,
            "guardian": True,
            "governance": True,
        }


# ==========================================================================
# Recommendation Parsing
# ==========================================================================

class TestRecommendationParsing:
    def test_item_shapes(self):
        items = [{"title": "A"}]
        assert _recommendation_items([{"recommendations": items}]) == items
        assert _recommendation_items({"recommendations": items}) == items
        assert _recommendation_items(items) == items
        assert _recommendation_items("nonsense") == []

    def test_build_recommendation_fields(self):
        result = StageResult(output_payload=[])
        rec = build_recommendation(
            {
                "explanation": ["Cites January data", "for a February summary"],
                "verdict": "FAIL",
                "confidence": "0.75",
                "severity": 3,
                "evidence_links": "not-a-list",
                "escalation_required": True,
                "observed_at": "2025-03-01T08:00:00Z",
            },
            StageName.GUARDIAN,
            StageName.SUMMARY,
            result,
        )

        assert rec.title == "Cites January data for a February summary"
        assert rec.explanation == "Cites January data\nfor a February summary"
        assert rec.confidence == 0.75
        assert rec.severity == 3
        assert rec.evidence_links == []
        assert rec.escalation_required is True
        assert rec.observed_at == datetime(2025, 3, 1, 8, tzinfo=timezone.utc)

    def test_item_without_title_or_explanation(self):
        assert build_recommendation({"verdict": "PASS"}, StageName.GUARDIAN, StageName.SUMMARY, StageResult()) is None

    def test_skips_failed_and_unknown_entries(self):
        result = StageResult(output_payload=[
            {"agent_under_test": "summary", "success": True, "output": [{"recommendations": [{"title": "A"}]}]},
            {"agent_under_test": "summary", "success": False, "error": "timeout"},
            {"agent_under_test": "not_a_stage", "success": True, "output": [{"title": "B"}]},
            {"agent_under_test": "opportunity", "success": True, "output": [{"title": "C"}, "stray"]},
        ])
        rows = parse_recommendations(StageName.GUARDIAN, result)

        assert [(r.audited_stage, r.title) for r in rows] == [
            (StageName.SUMMARY, "A"),
            (StageName.OPPORTUNITY, "C"),
        ]

    def test_audit_status(self):
        ok = GroupOutcome("summary", 1, True, True)
        half = GroupOutcome("opportunity", 1, True, False)
        down = GroupOutcome("cro_optimizer", 1, False, False)

        assert audit_status([ok]) == AuditStatus.SUCCESS
        assert audit_status([ok, half]) == AuditStatus.PARTIAL
        assert audit_status([down]) == AuditStatus.FAILED
