import errno
from ipaddress import IPv4Address
from unittest.mock import Mock, call

import pytest
from pyroute2.netlink.exceptions import NetlinkError

from leasecfg.datamodel import ZERO, ConfReconciler, InterfaceSession, NetworkLease, PreviousState, Route, TransitionKind
from leasecfg.osadapter import RT_SCOPE_LINK, AdapterError, NetlinkAdapter, OpResult
from leasecfg.reconciler import Reconciler

MASK24 = IPv4Address("255.255.255.0")


@pytest.fixture
def ipr():
    ipr = Mock()
    ipr.link_lookup.return_value = [7]
    return ipr


@pytest.fixture
def adapter(ipr):
    return NetlinkAdapter(ipr)


@pytest.mark.asyncio
async def test_interface_info(adapter, ipr):
    attrs = {"IFLA_ADDRESS": "aa:bb:cc:dd:ee:ff", "IFLA_MTU": 1500}
    link = Mock()
    link.get_attr.side_effect = attrs.get
    ipr.get_links.return_value = [link]

    info = await adapter.interface_info("eth0")

    assert info.index == 7
    assert info.mac == "aa:bb:cc:dd:ee:ff"
    assert info.mtu == 1500
    ipr.link_lookup.assert_called_with(ifname="eth0")


@pytest.mark.asyncio
async def test_unknown_interface_info(adapter, ipr):
    ipr.link_lookup.return_value = []
    with pytest.raises(AdapterError):
        await adapter.interface_info("nope0")


@pytest.mark.asyncio
async def test_unknown_interface_is_an_error(adapter, ipr):
    ipr.link_lookup.return_value = []

    assert await adapter.set_mtu("nope0", 1500) == OpResult.ERROR
    assert await adapter.delete_address("nope0", IPv4Address("10.0.0.5"), MASK24) == OpResult.ERROR
    assert await adapter.delete_route("nope0", ZERO, ZERO, IPv4Address("10.0.0.1"), 0) == OpResult.ERROR
    ipr.link.assert_not_called()
    ipr.addr.assert_not_called()
    ipr.route.assert_not_called()


@pytest.mark.asyncio
async def test_release_on_vanished_interface(ipr):
    ipr.link_lookup.return_value = []
    reconciler = Reconciler(NetlinkAdapter(ipr), ConfReconciler())
    session = InterfaceSession(
        name="eth0",
        natural_mtu=1500,
        previous=PreviousState(
            address="10.0.0.5",
            netmask=MASK24,
            mtu=1400,
            routes=[Route(destination=ZERO, netmask=ZERO, gateway="10.0.0.1")],
        ),
    )

    kind = await reconciler.reconcile(session, NetworkLease())

    assert kind == TransitionKind.DOWN
    assert session.previous == PreviousState(mtu=1400)


@pytest.mark.asyncio
async def test_add_address(adapter, ipr):
    rv = await adapter.add_address("eth0", IPv4Address("10.0.0.5"), MASK24, IPv4Address("10.0.0.255"))

    assert rv == OpResult.OK
    ipr.addr.assert_called_once_with("add", index=7, address="10.0.0.5", prefixlen=24, broadcast="10.0.0.255")


@pytest.mark.asyncio
async def test_add_address_exists(adapter, ipr):
    ipr.addr.side_effect = NetlinkError(errno.EEXIST)
    rv = await adapter.add_address("eth0", IPv4Address("10.0.0.5"), MASK24, ZERO)
    assert rv == OpResult.EXISTS
    ipr.addr.assert_called_once_with("add", index=7, address="10.0.0.5", prefixlen=24)


@pytest.mark.asyncio
async def test_add_address_error(adapter, ipr):
    ipr.addr.side_effect = NetlinkError(errno.EPERM)
    rv = await adapter.add_address("eth0", IPv4Address("10.0.0.5"), MASK24, ZERO)
    assert rv == OpResult.ERROR


@pytest.mark.asyncio
async def test_delete_address(adapter, ipr):
    rv = await adapter.delete_address("eth0", IPv4Address("10.0.0.5"), MASK24)
    assert rv == OpResult.OK
    ipr.addr.assert_called_once_with("del", index=7, address="10.0.0.5", prefixlen=24)


@pytest.mark.asyncio
async def test_add_default_route(adapter, ipr):
    rv = await adapter.add_route("eth0", ZERO, ZERO, IPv4Address("10.0.0.1"), 100)

    assert rv == OpResult.OK
    ipr.route.assert_called_once_with("add", dst="0.0.0.0", dst_len=0, oif=7, gateway="10.0.0.1", priority=100)


@pytest.mark.asyncio
async def test_add_link_route(adapter, ipr):
    await adapter.add_route("eth0", IPv4Address("10.0.0.0"), MASK24, ZERO, 0)
    ipr.route.assert_called_once_with("add", dst="10.0.0.0", dst_len=24, oif=7, scope=RT_SCOPE_LINK)


@pytest.mark.asyncio
async def test_route_exists_and_missing(adapter, ipr):
    ipr.route.side_effect = NetlinkError(errno.EEXIST)
    assert await adapter.add_route("eth0", ZERO, ZERO, IPv4Address("10.0.0.1"), 0) == OpResult.EXISTS

    ipr.route.side_effect = NetlinkError(errno.ESRCH)
    assert await adapter.delete_route("eth0", ZERO, ZERO, IPv4Address("10.0.0.1"), 0) == OpResult.ERROR


@pytest.mark.asyncio
async def test_set_mtu(adapter, ipr):
    assert await adapter.set_mtu("eth0", 9000) == OpResult.OK
    ipr.link.assert_called_once_with("set", index=7, mtu=9000)


@pytest.mark.asyncio
async def test_refresh_subnet_route(adapter, ipr):
    await adapter.refresh_subnet_route("eth0", IPv4Address("10.0.0.5"), MASK24, 10)

    assert ipr.route.call_args_list == [
        call("add", dst="10.0.0.0", dst_len=24, oif=7, scope=RT_SCOPE_LINK, priority=10),
        call("del", dst="10.0.0.0", dst_len=24, oif=7, scope=RT_SCOPE_LINK),
    ]
