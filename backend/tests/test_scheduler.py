from unittest.mock import patch

from subscriptn.services.payment_processor import PaymentResult
from subscriptn.services.rate_limiter import auth_rate_limiter
from subscriptn.tasks import scheduler as scheduler_module


def test_rate_limit_cleanup_job_purges_expired_windows():
    auth_rate_limiter.is_allowed("10.0.0.1")
    window = auth_rate_limiter.store.get("10.0.0.1")

    with patch.object(auth_rate_limiter, "_clock", return_value=window.reset_time + 1):
        scheduler_module.run_rate_limit_cleanup()

    assert auth_rate_limiter.store.get("10.0.0.1") is None


def test_payment_sweep_job_records_summary(session_factory):
    results = [
        PaymentResult(success=True, subscription_id=1, amount=100),
        PaymentResult(success=False, subscription_id=2, code="insufficient_balance"),
    ]

    with patch.object(scheduler_module, "SessionLocal", session_factory), \
            patch.object(scheduler_module, "process_all_due", return_value=results) as sweep:
        scheduler_module.run_payment_sweep()

    sweep.assert_called_once()
    assert scheduler_module.last_payment_sweep["summary"] == {"total": 2, "successful": 1, "failed": 1}


def test_payment_sweep_job_survives_errors(session_factory):
    with patch.object(scheduler_module, "SessionLocal", session_factory), \
            patch.object(scheduler_module, "process_all_due", side_effect=RuntimeError("boom")):
        scheduler_module.run_payment_sweep()

    assert scheduler_module.last_payment_sweep["error"] == "boom"
