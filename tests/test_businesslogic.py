from ipaddress import IPv4Address
from unittest.mock import AsyncMock

import pytest

from leasecfg.businesslogic import BusinessLogic
from leasecfg.datamodel import InterfaceInfo, LeaseEvent, NetworkLease, PreviousState, Route, TransitionKind
from leasecfg.dispatcher import Dispatcher
from leasecfg.leasedb import LeaseDB
from leasecfg.osadapter import OpResult, OSAdapter
from leasecfg.state import StateStore

LEASE = NetworkLease(
    address="10.0.0.5",
    netmask="255.255.255.0",
    routes=[Route(destination="0.0.0.0", netmask="0.0.0.0", gateway="10.0.0.1")],
)


@pytest.fixture
def adapter():
    adapter = AsyncMock(spec=OSAdapter)
    adapter.interface_info.return_value = InterfaceInfo(name="eth0", index=2, mac="aa:bb:cc:dd:ee:ff", mtu=1500)
    for name in ("add_address", "delete_address", "add_route", "delete_route", "set_mtu"):
        getattr(adapter, name).return_value = OpResult.OK
    return adapter


@pytest.mark.asyncio
async def test_lease_event(adapter, tmp_path):
    cdb = LeaseDB({"reconciler": {"route-metric": 5}})
    dispatcher = AsyncMock(spec=Dispatcher)
    store = StateStore(tmp_path)
    bl = BusinessLogic(adapter, cdb, store, dispatcher)

    await cdb.publish("/ops/lease", LeaseEvent(interface="eth0", lease=LEASE))

    adapter.add_address.assert_awaited_once()
    adapter.add_route.assert_awaited_once_with(
        "eth0", IPv4Address("0.0.0.0"), IPv4Address("0.0.0.0"), IPv4Address("10.0.0.1"), 5
    )
    dispatcher.up.assert_awaited_once()
    assert cdb.get("/ops/transitions/eth0") == TransitionKind.NEW
    assert cdb.get("/ops/interfaces/eth0").address == IPv4Address("10.0.0.5")
    assert bl.sessions["eth0"].natural_mtu == 1500
    assert store.load("eth0").previous.address == IPv4Address("10.0.0.5")


@pytest.mark.asyncio
async def test_session_restored_from_store(adapter, tmp_path):
    store = StateStore(tmp_path)
    cdb = LeaseDB()
    first = BusinessLogic(adapter, cdb, store, AsyncMock(spec=Dispatcher))
    await cdb.publish("/ops/lease", LeaseEvent(interface="eth0", lease=LEASE))

    # A fresh process sees the same lease again: nothing to change
    adapter.reset_mock()
    cdb = LeaseDB()
    second = BusinessLogic(adapter, cdb, store, AsyncMock(spec=Dispatcher))
    await cdb.publish("/ops/lease", LeaseEvent(interface="eth0", lease=LEASE))

    adapter.interface_info.assert_not_awaited()
    adapter.add_address.assert_not_awaited()
    adapter.add_route.assert_not_awaited()
    assert cdb.get("/ops/transitions/eth0") == TransitionKind.UP
    assert second.sessions["eth0"].previous == first.sessions["eth0"].previous


@pytest.mark.asyncio
async def test_unmanage(adapter, tmp_path):
    store = StateStore(tmp_path)
    cdb = LeaseDB()
    bl = BusinessLogic(adapter, cdb, store, AsyncMock(spec=Dispatcher))
    await cdb.publish("/ops/lease", LeaseEvent(interface="eth0", lease=LEASE))

    bl.unmanage("eth0")

    assert "eth0" not in bl.sessions
    assert store.load("eth0") is None
    adapter.delete_address.assert_not_awaited()


@pytest.mark.asyncio
async def test_release_event(adapter):
    cdb = LeaseDB()
    dispatcher = AsyncMock(spec=Dispatcher)
    bl = BusinessLogic(adapter, cdb, dispatcher=dispatcher)
    session = await bl.session("eth0")
    session.previous = PreviousState(address="10.0.0.5", netmask="255.255.255.0", mtu=1500, routes=LEASE.routes)

    await cdb.publish("/ops/lease", LeaseEvent(interface="eth0", lease=NetworkLease()))

    adapter.delete_address.assert_awaited_once()
    dispatcher.down.assert_awaited_once_with(session)
    assert cdb.get("/ops/transitions/eth0") == TransitionKind.DOWN
