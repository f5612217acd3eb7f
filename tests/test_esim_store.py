"""eSIM record transitions and the finalize lock."""

import threading

from simbridge.common.config import Settings
from simbridge.common.db import Base, make_engine, make_session_factory
from simbridge.common.state_machine import (
    ESIM_COMPLETED,
    ESIM_DONE,
    ESIM_FAILED,
    ESIM_PENDING,
    ESIM_PENDING_CONFIRMATION,
    ESIM_PROCESS,
)
from simbridge.services.esim.store import EsimStore
from simbridge.services.orders.store import OrderStore
from simbridge.services.sync.schemas import ProvisioningMaterial


def _material(iccid="8962000000000000001"):
    return ProvisioningMaterial(
        iccid=iccid,
        productName="eSIM Australia New Zealand",
        qrCode="LPA:1$smdp.example$ABC",
        smdpAddress="smdp.example",
        activationCode="ABC",
        apn={"name": "internet"},
    )


def test_insert_provisioning_is_idempotent(components, stored_order):
    """A second insert for the same item returns the stored row unchanged."""

    item_id = stored_order().item_ids[0]

    first = components.esims.insert_provisioning(item_id, _material())
    second = components.esims.insert_provisioning(item_id, _material("8962999999999999999"))

    assert second.id == first.id
    assert second.iccid == "8962000000000000001"
    assert first.status == ESIM_PENDING
    assert first.provisioned_at is None
    assert first.apn_name == "internet"
    assert first.product_name == "eSIM Australia New Zealand"


def test_lock_is_taken_once(components, provisioned):
    """Only the first finalize lock attempt succeeds."""

    esim = provisioned()[0]

    assert components.esims.mark_as_finalizing(esim.id) is True
    assert components.esims.mark_as_finalizing(esim.id) is False
    assert components.esims.find_by_id(esim.id).status == ESIM_PROCESS


def test_failed_record_is_lockable_again(components, provisioned):
    """A FAILED record can be locked by the next retry."""

    esim = provisioned()[0]
    components.esims.mark_as_finalizing(esim.id)
    assert components.esims.mark_failed(esim.id) is True

    assert components.esims.mark_as_finalizing(esim.id) is True


def test_done_is_terminal(components, provisioned):
    """DONE accepts no further transition."""

    esim = provisioned()[0]
    esims = components.esims
    esims.mark_as_finalizing(esim.id)
    esims.mark_pending_confirmation(esim.id)
    assert esims.mark_as_done(esim.id) is True

    assert esims.mark_as_finalizing(esim.id) is False
    assert esims.mark_failed(esim.id) is False
    done = esims.find_by_id(esim.id)
    assert done.status == ESIM_DONE
    assert done.activated_at is not None


def test_pending_confirmation_only_from_process(components, provisioned):
    """PENDING_CONFIRMATION requires the finalize lock."""

    esim = provisioned()[0]

    assert components.esims.mark_pending_confirmation(esim.id) is False
    components.esims.mark_as_finalizing(esim.id)
    assert components.esims.mark_pending_confirmation(esim.id) is True
    assert components.esims.find_by_id(esim.id).status == ESIM_PENDING_CONFIRMATION


def test_status_queries(components, provisioned):
    """Finders split records by pipeline stage."""

    first, second = provisioned(codes=("GTMSRLOW", "GTMSRLOX"))
    esims = components.esims
    esims.mark_as_finalizing(second.id)
    esims.mark_failed(second.id)

    assert [e.id for e in esims.find_pending_upload()] == [first.id]
    assert {e.id for e in esims.find_completed_but_not_done()} == {first.id, second.id}
    assert esims.find_by_id(second.id).status == ESIM_FAILED
    assert esims.find_done() == []


def test_completed_only_from_fresh_pending_record(components, stored_order):
    """A stored record is confirmed once; repeats leave it as it is."""

    item_id = stored_order().item_ids[0]
    esim = components.esims.insert_provisioning(item_id, _material())

    assert components.esims.mark_completed(esim.id) is True
    assert components.esims.mark_completed(esim.id) is False
    stored = components.esims.find_by_id(esim.id)
    assert stored.status == ESIM_COMPLETED
    assert stored.provisioned_at is not None


def test_late_delivery_does_not_release_finalize_lock(components, provisioned):
    """A second insert and completion after the lock is taken changes nothing."""

    esim = provisioned()[0]
    esims = components.esims
    assert esims.mark_as_finalizing(esim.id) is True

    again = esims.insert_provisioning(esim.order_item_id, _material(esim.iccid))

    assert again.id == esim.id
    assert esims.mark_completed(again.id) is False
    assert esims.find_by_id(esim.id).status == ESIM_PROCESS
    assert esims.mark_as_finalizing(esim.id) is False


def test_update_pdf_info(components, provisioned):
    """PDF path updates keep the earlier upload URL when none is given."""

    esim = provisioned()[0]

    components.esims.update_pdf_info(esim.id, "/tmp/a.pdf", "https://files.example/a.pdf")
    components.esims.update_pdf_info(esim.id, "/tmp/b.pdf")

    stored = components.esims.find_by_id(esim.id)
    assert stored.pdf_file_path == "/tmp/b.pdf"
    assert stored.upload_url == "https://files.example/a.pdf"


def test_concurrent_lock_has_one_winner(tmp_path, parsed_order):
    """Two threads racing for the lock get exactly one True."""

    settings = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'race.db'}")
    engine = make_engine(settings)
    Base.metadata.create_all(engine)
    session_factory = make_session_factory(engine)
    orders = OrderStore(session_factory)
    esims = EsimStore(session_factory)
    item_id = orders.save_parsed_order(parsed_order()).item_ids[0]
    esim = esims.insert_provisioning(item_id, _material())
    esims.mark_completed(esim.id)

    barrier = threading.Barrier(2)
    results = []

    def contend():
        barrier.wait()
        results.append(esims.mark_as_finalizing(esim.id))

    threads = [threading.Thread(target=contend) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    engine.dispose()

    assert sorted(results) == [False, True]
