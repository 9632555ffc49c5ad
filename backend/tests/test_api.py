"""
Agent Orchestrator - API Tests
==============================

Trigger, read and review routes over the test client.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from httpx import AsyncClient

from src.core.agents.periods import Period, month_period
from src.core.agents.store import new_result
from src.core.models import Recommendation, ReviewStatus, RunType, StageName, StageResult
from tests.conftest import REFERENCE, count_rows

API = "/api/v1"
BODY = {"reference_date": REFERENCE.isoformat()}
FEBRUARY = month_period("2025-02")


async def seed_recommendation(session, title: str = "Summary cites stale data", **kwargs) -> Recommendation:
    fields = {"source_stage_type": StageName.GUARDIAN, "audited_stage": StageName.SUMMARY, **kwargs}
    rec = Recommendation(title=title, **fields)
    session.add(rec)
    await session.commit()
    await session.refresh(rec)
    return rec


# ==========================================================================
# Health
# ==========================================================================

class TestHealth:
    async def test_root_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_agents_health_reports_endpoints(self, client: AsyncClient):
        response = await client.get(f"{API}/agents/health")

        assert response.status_code == 200
        data = response.json()
        assert set(data["endpoints"]) == {
            "proofline",
            "summary",
            "referral_engine",
            "opportunity",
            "cro_optimizer",
            "gbp_optimizer",
            "guardian",
            "governance_sentinel",
        }
        assert data["status"] in ("ok", "degraded")


# ==========================================================================
# Triggers
# ==========================================================================

class TestTriggers:
    async def test_process_all(self, client: AsyncClient, account):
        response = await client.post(f"{API}/agents/process-all", json=BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["succeeded"] == 1
        entry = data["accounts"][0]
        assert entry["domain"] == "smile-dental.com"
        assert entry["daily"]["status"] == "success"
        assert entry["monthly"]["tasks_created"] == {"USER": 2, "ALLORO": 3}

    async def test_process_daily(self, client: AsyncClient, account):
        response = await client.post(f"{API}/agents/process-daily", json=BODY)

        assert response.status_code == 200
        assert response.json()["accounts"][0]["monthly"] is None

    async def test_process_monthly_without_body(self, client: AsyncClient, account):
        response = await client.post(f"{API}/agents/monthly")

        assert response.status_code == 200
        assert response.json()["total"] == 1

    async def test_monthly_for_account_then_skip(self, client: AsyncClient, account):
        url = f"{API}/agents/monthly/{account.id}"

        first = await client.post(url, json=BODY)
        second = await client.post(url, json=BODY)
        forced = await client.post(url, json={**BODY, "force": True})

        assert first.json()["monthly"]["status"] == "success"
        assert second.json()["monthly"]["reason"] == "already_exists"
        assert forced.json()["status"] == "success"

    async def test_monthly_for_unknown_account(self, client: AsyncClient):
        response = await client.post(f"{API}/agents/monthly/{uuid4()}", json=BODY)
        assert response.status_code == 404

    async def test_monthly_rejects_bad_account_id(self, client: AsyncClient):
        response = await client.post(f"{API}/agents/monthly/not-a-uuid", json=BODY)
        assert response.status_code == 422

    async def test_audit_without_results_is_skipped(self, client: AsyncClient):
        response = await client.post(f"{API}/agents/audit", json=BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "skipped"
        assert data["reason"] == "no_results"
        assert data["period"] == {"start": "2025-02-01", "end": "2025-02-28"}

    async def test_audit_after_monthly_run(self, client: AsyncClient, account):
        await client.post(f"{API}/agents/monthly", json=BODY)

        response = await client.post(f"{API}/agents/audit", json=BODY)

        data = response.json()
        assert data["status"] == "success"
        assert [g["stage"] for g in data["groups"]] == [
            "cro_optimizer",
            "opportunity",
            "referral_engine",
            "summary",
        ]
        assert data["recommendations_created"] == 8

    async def test_audit_window_needs_both_ends(self, client: AsyncClient):
        response = await client.post(f"{API}/agents/audit", json={"start": "2025-02-01"})
        assert response.status_code == 422

    async def test_audit_window_must_be_ordered(self, client: AsyncClient):
        response = await client.post(
            f"{API}/agents/audit",
            json={"start": "2025-02-28", "end": "2025-02-01"},
        )
        assert response.status_code == 422


# ==========================================================================
# Read Views
# ==========================================================================

class TestLatest:
    async def test_latest_per_stage(self, client: AsyncClient, account):
        await client.post(f"{API}/agents/process-all", json=BODY)

        response = await client.get(f"{API}/agents/latest/{account.id}")

        assert response.status_code == 200
        results = response.json()["results"]
        assert set(results) == {"proofline", "summary", "referral_engine", "opportunity", "cro_optimizer"}
        assert results["summary"]["period_start"] == "2025-02-01"
        assert results["proofline"]["run_type"] == "daily"

    async def test_latest_unknown_account(self, client: AsyncClient):
        response = await client.get(f"{API}/agents/latest/{uuid4()}")
        assert response.status_code == 404


# ==========================================================================
# Recommendation Review
# ==========================================================================

class TestRecommendations:
    async def test_review_pass(self, client: AsyncClient, db_session):
        rec = await seed_recommendation(db_session)

        response = await client.patch(f"{API}/recommendations/{rec.id}", json={"status": "PASS"})

        assert response.status_code == 200
        data = response.json()
        assert data["review_status"] == "PASS"
        assert data["reviewed_at"] is not None

    async def test_ignore_clears_verdict(self, client: AsyncClient, db_session):
        rec = await seed_recommendation(
            db_session,
            review_status=ReviewStatus.REJECT,
            reviewed_at=datetime(2025, 2, 20, tzinfo=timezone.utc),
        )

        response = await client.patch(f"{API}/recommendations/{rec.id}", json={"status": "IGNORE"})

        assert response.status_code == 200
        assert response.json()["review_status"] is None
        assert response.json()["reviewed_at"] is None

    async def test_review_unknown(self, client: AsyncClient):
        response = await client.patch(f"{API}/recommendations/{uuid4()}", json={"status": "PASS"})
        assert response.status_code == 404

    async def test_review_rejects_unknown_status(self, client: AsyncClient, db_session):
        rec = await seed_recommendation(db_session)

        response = await client.patch(f"{API}/recommendations/{rec.id}", json={"status": "MAYBE"})

        assert response.status_code == 422

    async def test_list_filtered_by_review_status(self, client: AsyncClient, db_session):
        await seed_recommendation(db_session, title="open")
        await seed_recommendation(
            db_session,
            title="passed",
            review_status=ReviewStatus.PASS,
            reviewed_at=datetime(2025, 2, 20, tzinfo=timezone.utc),
        )

        everything = await client.get(f"{API}/recommendations/summary")
        passed = await client.get(f"{API}/recommendations/summary", params={"review_status": "PASS"})
        other = await client.get(f"{API}/recommendations/opportunity")

        assert everything.json()["total"] == 2
        assert [r["title"] for r in passed.json()["items"]] == ["passed"]
        assert other.json()["total"] == 0

    async def test_list_unknown_stage(self, client: AsyncClient):
        response = await client.get(f"{API}/recommendations/not_a_stage")
        assert response.status_code == 422


# ==========================================================================
# Recommendation Insights
# ==========================================================================

async def seed_audit_row(session, period: Period, stage: StageName = StageName.GUARDIAN) -> StageResult:
    row = new_result(None, stage, period, RunType.AUDIT, output_payload=[{"success": True}])
    session.add(row)
    await session.commit()
    return row


class TestInsights:
    async def test_summary_counts_per_stage(self, client: AsyncClient, db_session):
        await seed_recommendation(db_session, title="a", verdict="PASS", confidence=0.9)
        await seed_recommendation(db_session, title="b", verdict="FAIL", confidence=0.5,
                                  review_status=ReviewStatus.PASS)
        await seed_recommendation(db_session, title="c", audited_stage=StageName.OPPORTUNITY, verdict="PASS")

        response = await client.get(f"{API}/recommendations/insights/summary")

        assert response.status_code == 200
        data = response.json()
        assert data["period"] is None
        by_stage = {item["stage"]: item for item in data["items"]}
        assert set(by_stage) == {"opportunity", "summary"}
        summary = by_stage["summary"]
        assert (summary["total"], summary["pass_count"], summary["fail_count"], summary["fixed_count"]) == (2, 1, 1, 1)
        assert summary["pass_rate"] == 0.5
        assert summary["avg_confidence"] == pytest.approx(0.7)
        assert by_stage["opportunity"]["avg_confidence"] == 0.0

    async def test_summary_for_one_month(self, client: AsyncClient, db_session):
        february = await seed_audit_row(db_session, FEBRUARY)
        january = await seed_audit_row(db_session, month_period("2025-01"))
        await seed_recommendation(db_session, title="feb", agent_result_id=february.id)
        await seed_recommendation(db_session, title="jan", agent_result_id=january.id)
        await seed_recommendation(db_session, title="unlinked")

        response = await client.get(f"{API}/recommendations/insights/summary", params={"month": "2025-02"})

        data = response.json()
        assert data["period"] == {"start": "2025-02-01", "end": "2025-02-28"}
        assert [(i["stage"], i["total"]) for i in data["items"]] == [("summary", 1)]

    async def test_summary_rejects_bad_month(self, client: AsyncClient):
        response = await client.get(f"{API}/recommendations/insights/summary", params={"month": "2025-13"})
        assert response.status_code == 422

    async def test_mark_all_pass(self, client: AsyncClient, db_session):
        rejected = {"review_status": ReviewStatus.REJECT, "reviewed_at": datetime(2025, 2, 20, tzinfo=timezone.utc)}
        await seed_recommendation(db_session, title="guardian reject", **rejected)
        await seed_recommendation(db_session, title="sentinel reject",
                                  source_stage_type=StageName.GOVERNANCE_SENTINEL, **rejected)
        await seed_recommendation(db_session, title="other stage", audited_stage=StageName.OPPORTUNITY, **rejected)
        await seed_recommendation(db_session, title="open")

        response = await client.patch(
            f"{API}/recommendations/summary/mark-all-pass",
            params={"source": "guardian"},
        )

        assert response.status_code == 200
        assert response.json() == {"stage": "summary", "updated": 1}

        response = await client.patch(f"{API}/recommendations/summary/mark-all-pass")

        assert response.json()["updated"] == 1
        assert await count_rows(db_session, Recommendation, Recommendation.review_status == ReviewStatus.PASS) == 2
        assert await count_rows(db_session, Recommendation, Recommendation.review_status.is_(None)) == 1

    async def test_bulk_delete(self, client: AsyncClient, db_session):
        first = await seed_recommendation(db_session, title="first")
        second = await seed_recommendation(db_session, title="second")
        await seed_recommendation(db_session, title="kept")

        response = await client.request(
            "DELETE",
            f"{API}/recommendations/bulk-delete",
            json={"ids": [str(first.id), str(second.id), str(uuid4())]},
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": 2}
        assert await count_rows(db_session, Recommendation) == 1

    async def test_bulk_delete_needs_ids(self, client: AsyncClient):
        response = await client.request("DELETE", f"{API}/recommendations/bulk-delete", json={"ids": []})
        assert response.status_code == 422

    async def test_clear_month_allows_a_new_audit(self, client: AsyncClient, account, db_session):
        await client.post(f"{API}/agents/monthly", json=BODY)
        await client.post(f"{API}/agents/audit", json=BODY)
        skipped = await client.post(f"{API}/agents/audit", json=BODY)
        assert skipped.json()["status"] == "skipped"

        response = await client.delete(f"{API}/recommendations/month-data", params={"month": "2025-02"})

        assert response.status_code == 200
        assert response.json() == {
            "period": {"start": "2025-02-01", "end": "2025-02-28"},
            "deleted_results": 2,
            "deleted_recommendations": 8,
        }
        assert await count_rows(db_session, Recommendation) == 0
        # Monthly stage rows are untouched
        assert await count_rows(db_session, StageResult, StageResult.run_type == RunType.MONTHLY) == 4

        rerun = await client.post(f"{API}/agents/audit", json=BODY)
        assert rerun.json()["status"] == "success"
        assert rerun.json()["recommendations_created"] == 8
