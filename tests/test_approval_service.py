"""
Tests: quotation approval state machine.

Covers request (matching, guards), step decisions under both level
policies, multi-level advancement, rejection, forced approval of the
quotation on completion, and idempotent re-invocation of advancement.
"""

import pytest

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models import db as _db
from app.models.approval import ApprovalStep, QuotationApproval
from app.models.audit import AuditLog
from app.models.quotation import Quotation
from app.services import approval_service, workflow_service


def _level(n, *users, require_all=False):
    return {
        "level": n,
        "name": f"Level {n}",
        "approver_user_ids": [u.id for u in users],
        "require_all_approvers": require_all,
    }


def _pending_steps(approval, user):
    return [
        s for s in approval["steps"]
        if s["approver_user_id"] == user.id and s["status"] == "PENDING"
    ]


def _decide(approval, user, status="APPROVED", comments=None):
    step = _pending_steps(approval, user)[0]
    return approval_service.process_approval_step(
        approval["id"], step["id"], status, comments, user.id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Request
# ═════════════════════════════════════════════════════════════════════════════


class TestRequestApproval:
    def test_opens_level_one(self, make_user, make_workflow, make_quotation):
        rep = make_user()
        m1, m2 = make_user(), make_user()
        wf = make_workflow([_level(1, m1, m2)])
        q = make_quotation()

        approval = approval_service.request_approval(q.id, rep.id)

        assert approval["status"] == "PENDING"
        assert approval["current_level"] == 1
        assert approval["workflow_id"] == wf["id"]
        assert approval["requested_by_user_id"] == rep.id
        assert sorted(s["approver_user_id"] for s in approval["steps"]) == sorted([m1.id, m2.id])
        assert all(s["level"] == 1 and s["status"] == "PENDING" for s in approval["steps"])
        assert AuditLog.query.filter_by(action="approval.request").count() == 1

    def test_picks_highest_priority_match(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)], name="W2", priority=1,
                      conditions=[{"field": "total_amount", "operator": "gte", "value": 0}])
        w1 = make_workflow([_level(1, u)], name="W1", priority=5,
                           conditions=[{"field": "total_amount", "operator": "gte", "value": 100000}])

        approval = approval_service.request_approval(make_quotation(total_amount=150000).id, u.id)
        assert approval["workflow_id"] == w1["id"]
        assert approval["workflow_name"] == "W1"

    def test_unknown_quotation(self, make_user):
        with pytest.raises(NotFoundError):
            approval_service.request_approval(999, make_user().id)

    @pytest.mark.parametrize("status", ["APPROVED", "REJECTED", "EXPIRED"])
    def test_not_approvable(self, make_user, make_workflow, make_quotation, status):
        u = make_user()
        make_workflow([_level(1, u)])
        with pytest.raises(ValidationError) as exc:
            approval_service.request_approval(make_quotation(status=status).id, u.id)
        assert exc.value.code == "QUOTATION_NOT_APPROVABLE"

    def test_sent_is_approvable(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)])
        approval = approval_service.request_approval(make_quotation(status="SENT").id, u.id)
        assert approval["status"] == "PENDING"

    def test_already_pending(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)])
        q = make_quotation()
        approval_service.request_approval(q.id, u.id)
        with pytest.raises(ValidationError) as exc:
            approval_service.request_approval(q.id, u.id)
        assert exc.value.code == "APPROVAL_ALREADY_PENDING"
        assert QuotationApproval.query.filter_by(quotation_id=q.id).count() == 1

    def test_no_matching_workflow(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)],
                      conditions=[{"field": "total_amount", "operator": "gt", "value": 1000000}])
        with pytest.raises(ValidationError) as exc:
            approval_service.request_approval(make_quotation(total_amount=10).id, u.id)
        assert exc.value.code == "NO_MATCHING_WORKFLOW"

    def test_rerequest_after_rejection(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)])
        q = make_quotation()
        _decide(approval_service.request_approval(q.id, u.id), u, "REJECTED")

        again = approval_service.request_approval(q.id, u.id)
        assert again["status"] == "PENDING"


# ═════════════════════════════════════════════════════════════════════════════
# Step decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestProcessStep:
    def test_any_one_approver_completes_level(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a, b)])
        q = make_quotation()
        approval = approval_service.request_approval(q.id, a.id)

        result = _decide(approval, a, comments="fine")

        assert result["status"] == "APPROVED"
        assert result["completed_at"] is not None
        decided = next(s for s in result["steps"] if s["approver_user_id"] == a.id)
        assert decided["comments"] == "fine"
        assert decided["approved_at"] is not None
        assert _db.session.get(Quotation, q.id).status == "APPROVED"

    def test_all_approvers_required(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a, b, require_all=True)])
        approval = approval_service.request_approval(make_quotation().id, a.id)

        after_a = _decide(approval, a)
        assert after_a["status"] == "PENDING"
        assert after_a["current_level"] == 1

        after_b = _decide(after_a, b)
        assert after_b["status"] == "APPROVED"

    def test_multi_level_advance(self, make_user, make_workflow, make_quotation):
        m, f = make_user(), make_user()
        make_workflow([_level(1, m), _level(2, f)])
        q = make_quotation()
        approval = approval_service.request_approval(q.id, m.id)

        after_l1 = _decide(approval, m)
        assert after_l1["status"] == "PENDING"
        assert after_l1["current_level"] == 2
        level2 = [s for s in after_l1["steps"] if s["level"] == 2]
        assert [s["approver_user_id"] for s in level2] == [f.id]
        assert _db.session.get(Quotation, q.id).status == "DRAFT"

        final = _decide(after_l1, f)
        assert final["status"] == "APPROVED"
        assert final["current_level"] == 2
        assert _db.session.get(Quotation, q.id).status == "APPROVED"

    def test_rejection_finalizes_and_leaves_quotation(self, make_user, make_workflow, make_quotation):
        m, f = make_user(), make_user()
        make_workflow([_level(1, m), _level(2, f)])
        q = make_quotation(status="SENT")
        approval = approval_service.request_approval(q.id, m.id)

        result = _decide(approval, m, "REJECTED", comments="too cheap")

        assert result["status"] == "REJECTED"
        assert result["current_level"] == 1
        assert not [s for s in result["steps"] if s["level"] == 2]
        assert _db.session.get(Quotation, q.id).status == "SENT"

    def test_one_rejection_beats_approvals(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a, b, require_all=True)])
        approval = approval_service.request_approval(make_quotation().id, a.id)

        after_a = _decide(approval, a)
        result = _decide(after_a, b, "REJECTED")
        assert result["status"] == "REJECTED"

    def test_draft_is_force_approved(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)])
        q = make_quotation(status="DRAFT")
        _decide(approval_service.request_approval(q.id, u.id), u)

        assert _db.session.get(Quotation, q.id).status == "APPROVED"
        assert AuditLog.query.filter_by(action="quotation.force_approve").count() == 1

    def test_wrong_user(self, make_user, make_workflow, make_quotation):
        a, intruder = make_user(), make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        step = approval["steps"][0]
        with pytest.raises(AuthorizationError):
            approval_service.process_approval_step(
                approval["id"], step["id"], "APPROVED", None, intruder.id,
            )

    def test_bad_decision(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        with pytest.raises(ValidationError):
            approval_service.process_approval_step(
                approval["id"], approval["steps"][0]["id"], "PENDING", None, a.id,
            )

    @pytest.mark.parametrize("status", [["APPROVED"], {"s": "APPROVED"}, 1])
    def test_non_string_decision(self, make_user, make_workflow, make_quotation, status):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        with pytest.raises(ValidationError):
            approval_service.process_approval_step(
                approval["id"], approval["steps"][0]["id"], status, None, a.id,
            )

    def test_unknown_step(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        with pytest.raises(NotFoundError):
            approval_service.process_approval_step(approval["id"], 9999, "APPROVED", None, a.id)

    def test_step_from_other_approval(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        first = approval_service.request_approval(make_quotation().id, a.id)
        second = approval_service.request_approval(make_quotation().id, a.id)
        with pytest.raises(ValidationError) as exc:
            approval_service.process_approval_step(
                first["id"], second["steps"][0]["id"], "APPROVED", None, a.id,
            )
        assert exc.value.code == "STEP_APPROVAL_MISMATCH"

    def test_step_processed_twice(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a, b, require_all=True)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        step = _pending_steps(approval, a)[0]
        approval_service.process_approval_step(approval["id"], step["id"], "APPROVED", None, a.id)

        with pytest.raises(ValidationError) as exc:
            approval_service.process_approval_step(approval["id"], step["id"], "REJECTED", None, a.id)
        assert exc.value.code == "STEP_ALREADY_PROCESSED"

    def test_leftover_step_after_completion(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a, b)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        leftover = _pending_steps(approval, b)[0]
        _decide(approval, a)

        with pytest.raises(ValidationError) as exc:
            approval_service.process_approval_step(approval["id"], leftover["id"], "APPROVED", None, b.id)
        assert exc.value.code == "APPROVAL_NOT_PENDING"

    def test_leftover_step_on_closed_level(self, make_user, make_workflow, make_quotation):
        a, b, c = make_user(), make_user(), make_user()
        make_workflow([_level(1, a, b), _level(2, c)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        leftover = _pending_steps(approval, b)[0]
        _decide(approval, a)

        with pytest.raises(ValidationError) as exc:
            approval_service.process_approval_step(approval["id"], leftover["id"], "REJECTED", None, b.id)
        assert exc.value.code == "LEVEL_CLOSED"
        assert _db.session.get(QuotationApproval, approval["id"]).status == "PENDING"

    def test_same_user_on_two_levels(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a), _level(2, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)

        after_l1 = _decide(approval, a)
        assert after_l1["current_level"] == 2
        assert _decide(after_l1, a)["status"] == "APPROVED"


# ═════════════════════════════════════════════════════════════════════════════
# Advancement
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowEditsDuringApproval:
    def test_level_removal_refused_and_approval_completes(
        self, make_user, make_workflow, make_quotation,
    ):
        m, f = make_user(), make_user()
        wf = make_workflow([_level(1, m), _level(2, f)])
        q = make_quotation()
        after_l1 = _decide(approval_service.request_approval(q.id, m.id), m)
        assert after_l1["current_level"] == 2

        with pytest.raises(ValidationError) as exc:
            workflow_service.update_workflow(wf["id"], {"approval_levels": [_level(1, m)]})
        assert exc.value.code == "HAS_PENDING_APPROVALS"

        final = _decide(after_l1, f)
        assert final["status"] == "APPROVED"
        assert _db.session.get(Quotation, q.id).status == "APPROVED"

    def test_levels_editable_once_finished(self, make_user, make_workflow, make_quotation):
        m, f = make_user(), make_user()
        wf = make_workflow([_level(1, m), _level(2, f)])
        approval = approval_service.request_approval(make_quotation().id, m.id)
        _decide(approval, m, "REJECTED")

        updated = workflow_service.update_workflow(wf["id"], {"approval_levels": [_level(1, m)]})
        assert len(updated["approval_levels"]) == 1


class TestAdvanceApproval:
    def _approve_step_only(self, step_id):
        """Mark a step APPROVED without running advancement."""
        step = _db.session.get(ApprovalStep, step_id)
        step.status = "APPROVED"
        _db.session.commit()

    def test_waiting_when_level_incomplete(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        assert approval_service.advance_approval(approval["id"]) == "waiting"

    def test_reinvocation_is_noop(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        _decide(approval, a)

        assert approval_service.advance_approval(approval["id"]) == "noop"
        assert AuditLog.query.filter_by(action="approval.finalize").count() == 1

    def test_stale_expected_level(self, make_user, make_workflow, make_quotation):
        a, b = make_user(), make_user()
        make_workflow([_level(1, a), _level(2, b)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        self._approve_step_only(approval["steps"][0]["id"])

        assert approval_service.advance_approval(approval["id"], expected_level=1) == "advanced"
        # A second caller that also observed level 1 must not advance again
        assert approval_service.advance_approval(approval["id"], expected_level=1) == "stale"
        assert approval_service.advance_approval(approval["id"]) == "waiting"

        level2 = ApprovalStep.query.filter_by(approval_id=approval["id"], level=2).all()
        assert len(level2) == 1

    def test_unknown_approval(self):
        with pytest.raises(NotFoundError):
            approval_service.advance_approval(4242)

    def test_detail(self, make_user, make_workflow, make_quotation):
        a = make_user()
        make_workflow([_level(1, a)])
        approval = approval_service.request_approval(make_quotation().id, a.id)
        detail = approval_service.get_approval_detail(approval["id"])
        assert detail["total_levels"] == 1
        assert detail["current_level_name"] == "Level 1"
        assert detail["quotation"]["id"] == approval["quotation_id"]


class TestApprovalHistory:
    def test_full_trail(self, make_user, make_workflow, make_quotation):
        m, f = make_user(), make_user()
        make_workflow([_level(1, m), _level(2, f)])
        approval = approval_service.request_approval(make_quotation().id, m.id)
        _decide(_decide(approval, m), f)

        actions = [row["action"] for row in approval_service.get_approval_history(approval["id"])]
        assert actions == [
            "approval.request",
            "approval.step_decide",
            "approval.advance",
            "approval.step_decide",
            "approval.finalize",
            "quotation.force_approve",
        ]

    def test_only_own_force_approve(self, make_user, make_workflow, make_quotation):
        u = make_user()
        make_workflow([_level(1, u)])
        q = make_quotation(status="SENT")
        first = approval_service.request_approval(q.id, u.id)
        _decide(first, u)
        _db.session.get(Quotation, q.id).status = "SENT"
        _db.session.commit()
        second = approval_service.request_approval(q.id, u.id)
        _decide(second, u)

        history = approval_service.get_approval_history(first["id"])
        forced = [row for row in history if row["action"] == "quotation.force_approve"]
        assert len(forced) == 1
        assert forced[0]["diff"]["approval_id"] == first["id"]
