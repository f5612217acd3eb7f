import pytest

from simbridge.common.errors import FulfillmentError
from simbridge.common.state_machine import FULFILLMENT_TARGET

from conftest import FlakyFulfillmentClient


def test_retry_picks_up_failed_and_never_attempted_items(components, stored_order, monkeypatch):
    """Retry covers FAILED ledger rows and items never sent."""

    stored_order(codes=("GTMSRLOW", "GTMSRLOX"))
    monkeypatch.setattr(components.fulfillment, "client", FlakyFulfillmentClient(failures=1))
    with pytest.raises(FulfillmentError):
        components.fulfillment.send_item("GTMSRLOW")

    assert components.retry.fulfillment_candidates() == ["GTMSRLOW", "GTMSRLOX"]

    result = components.retry.retry_fulfillment()

    assert sorted(result.succeeded) == ["GTMSRLOW", "GTMSRLOX"]
    assert components.retry.fulfillment_candidates() == []
    assert components.ledger.find_latest_attempt("GTMSRLOW", FULFILLMENT_TARGET).attempt_count == 2


def test_full_pass_finalizes_and_sweeps_expired_otps(components, provisioned):
    """A full pass finalizes waiting records and reports the OTP sweep."""

    esim = provisioned()[0]

    report = components.retry.run("all", limit=10)

    assert report.fulfillment.succeeded == []
    assert report.finalize.finalized == [esim.id]
    assert report.expired_otps == 0

    again = components.retry.run("finalize")
    assert again.fulfillment is None
    assert again.finalize.finalized == []


def test_nothing_to_retry(components):
    """An empty database gives an empty report."""

    report = components.retry.run()

    assert report.fulfillment.succeeded == []
    assert report.finalize.finalized == []


def test_unknown_stage_is_rejected(components):
    """Stage names outside the allowed set raise."""

    with pytest.raises(ValueError):
        components.retry.run("everything")
