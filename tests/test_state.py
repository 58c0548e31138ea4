from leasecfg.datamodel import InterfaceSession, PreviousState, Route
from leasecfg.state import StateStore


def test_save_and_load(tmp_path):
    store = StateStore(tmp_path / "state")
    session = InterfaceSession(
        name="eth0",
        hwaddr="aa:bb:cc:dd:ee:ff",
        natural_mtu=1500,
        previous=PreviousState(
            address="10.0.0.5",
            netmask="255.255.255.0",
            mtu=1400,
            routes=[Route(destination="0.0.0.0", netmask="0.0.0.0", gateway="10.0.0.1")],
        ),
    )

    store.save(session)
    loaded = store.load("eth0")

    assert loaded.previous == session.previous
    assert loaded.natural_mtu == 1500
    assert not loaded.lock.locked()
    assert not (tmp_path / "state" / "eth0.tmp").exists()


def test_missing_and_corrupt(tmp_path):
    store = StateStore(tmp_path)
    assert store.load("eth0") is None

    store.path("eth0").write_text("{not json")
    assert store.load("eth0") is None

    store.remove("eth0")
    store.remove("eth0")
    assert not store.path("eth0").exists()
