from api_runner.models import RequestOutcome, RunState, RunSummary, Token, Verdict


def test_token_validity_respects_margin():
    token = Token(access_token="at", token_type="bearer", expires_at=1000.0)

    assert token.is_valid(now=900.0, margin=60)
    assert not token.is_valid(now=950.0, margin=60)
    assert token.authorization == "Bearer at"


def test_outcome_passes_only_without_errors_or_failed_verdicts():
    outcome = RequestOutcome(request_name="r", method="GET", url="u", status=200)
    assert outcome.passed

    outcome.verdicts = [Verdict("a", True, ""), Verdict("b", False, "nope")]
    assert not outcome.passed
    assert [v.name for v in outcome.failed_verdicts()] == ["b"]


def test_run_states():
    assert not RunState.RUNNING.terminal
    assert all(s.terminal for s in (RunState.COMPLETED, RunState.ABORTED, RunState.FAILED))
    assert RunSummary("c", state=RunState.COMPLETED).success
    assert not RunSummary("c", state=RunState.FAILED).success
