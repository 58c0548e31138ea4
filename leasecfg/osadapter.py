"""OS mutation primitives.

Every primitive is idempotent on duplicates: adding something that is already
there answers ``OpResult.EXISTS`` instead of failing.
"""

# pylint: disable=import-error, invalid-name

import asyncio
import errno
import logging
from enum import Enum
from ipaddress import IPv4Address

from pyroute2 import IPRoute
from pyroute2.netlink.exceptions import NetlinkError
from scapy.utils import str2mac

from leasecfg.datamodel import ZERO, InterfaceInfo, prefixlen

logger = logging.getLogger(__name__)

RT_SCOPE_LINK = 253


class AdapterError(Exception):
    """Interface lookup or adapter setup failed."""


class OpResult(Enum):
    """Outcome of an OS primitive."""

    OK = "ok"
    EXISTS = "exists"
    ERROR = "error"


class OSAdapter:
    """Interface for the primitives the reconciler drives.

    Mutating primitives never raise for an unknown interface: they log and
    answer ``OpResult.ERROR``. Only ``interface_info`` raises ``AdapterError``.
    """

    async def interface_info(self, ifname: str) -> InterfaceInfo:
        raise NotImplementedError

    async def add_address(
        self, ifname: str, address: IPv4Address, netmask: IPv4Address, broadcast: IPv4Address
    ) -> OpResult:
        raise NotImplementedError

    async def delete_address(self, ifname: str, address: IPv4Address, netmask: IPv4Address) -> OpResult:
        raise NotImplementedError

    async def add_route(
        self, ifname: str, destination: IPv4Address, netmask: IPv4Address, gateway: IPv4Address, metric: int
    ) -> OpResult:
        raise NotImplementedError

    async def delete_route(
        self, ifname: str, destination: IPv4Address, netmask: IPv4Address, gateway: IPv4Address, metric: int
    ) -> OpResult:
        raise NotImplementedError

    async def set_mtu(self, ifname: str, mtu: int) -> OpResult:
        raise NotImplementedError

    async def refresh_subnet_route(
        self, ifname: str, address: IPv4Address, netmask: IPv4Address, metric: int
    ) -> None:
        """Give the connected subnet route the configured metric.

        Only needed on platforms that install the subnet route at metric 0
        when an address is added. The default does nothing.
        """

    async def close(self) -> None:
        pass


def _netlink_result(op: str, e: NetlinkError) -> OpResult:
    if e.code == errno.EEXIST:
        logger.debug("%s: already exists", op)
        return OpResult.EXISTS
    logger.error("%s failed: %s", op, e)
    return OpResult.ERROR


class NetlinkAdapter(OSAdapter):
    """Linux kernel primitives over rtnetlink.

    pyroute2 is synchronous, so every request runs in a worker thread.
    """

    def __init__(self, ipr: IPRoute | None = None):
        self.ipr = ipr or IPRoute()

    async def close(self) -> None:
        self.ipr.close()

    def _index(self, ifname: str) -> int:
        indexes = self.ipr.link_lookup(ifname=ifname)
        if not indexes:
            raise AdapterError(f"Interface {ifname} not found")
        return indexes[0]

    async def _request(self, op: str, ifname: str, method, command: str, index_key: str, **kwargs) -> OpResult:
        """Run one netlink request against ``ifname`` and map the outcome."""
        try:
            kwargs[index_key] = await asyncio.to_thread(self._index, ifname)
            await asyncio.to_thread(method, command, **kwargs)
        except AdapterError as e:
            logger.error("%s failed: %s", op, e)
            return OpResult.ERROR
        except NetlinkError as e:
            return _netlink_result(op, e)
        logger.debug("%s", op)
        return OpResult.OK

    async def interface_info(self, ifname: str) -> InterfaceInfo:
        index = await asyncio.to_thread(self._index, ifname)
        links = await asyncio.to_thread(self.ipr.get_links, index)
        link = links[0]
        mac = link.get_attr("IFLA_ADDRESS") or "00:00:00:00:00:00"
        if isinstance(mac, bytes):
            mac = str2mac(mac)
        return InterfaceInfo(name=ifname, index=index, mac=mac, mtu=link.get_attr("IFLA_MTU"))

    async def add_address(self, ifname, address, netmask, broadcast) -> OpResult:
        op = f"add address {address}/{prefixlen(netmask)} on {ifname}"
        kwargs = {"address": str(address), "prefixlen": prefixlen(netmask)}
        if broadcast and broadcast != ZERO:
            kwargs["broadcast"] = str(broadcast)
        return await self._request(op, ifname, self.ipr.addr, "add", "index", **kwargs)

    async def delete_address(self, ifname, address, netmask) -> OpResult:
        op = f"delete address {address}/{prefixlen(netmask)} on {ifname}"
        return await self._request(
            op, ifname, self.ipr.addr, "del", "index", address=str(address), prefixlen=prefixlen(netmask)
        )

    @staticmethod
    def _route_args(destination, netmask, gateway, metric) -> dict:
        kwargs = {"dst": str(destination), "dst_len": prefixlen(netmask)}
        if gateway and gateway != ZERO:
            kwargs["gateway"] = str(gateway)
        else:
            kwargs["scope"] = RT_SCOPE_LINK
        if metric:
            kwargs["priority"] = metric
        return kwargs

    async def add_route(self, ifname, destination, netmask, gateway, metric) -> OpResult:
        op = f"add route {destination}/{prefixlen(netmask)} via {gateway} metric {metric} on {ifname}"
        kwargs = self._route_args(destination, netmask, gateway, metric)
        return await self._request(op, ifname, self.ipr.route, "add", "oif", **kwargs)

    async def delete_route(self, ifname, destination, netmask, gateway, metric) -> OpResult:
        op = f"delete route {destination}/{prefixlen(netmask)} via {gateway} metric {metric} on {ifname}"
        kwargs = self._route_args(destination, netmask, gateway, metric)
        return await self._request(op, ifname, self.ipr.route, "del", "oif", **kwargs)

    async def set_mtu(self, ifname, mtu) -> OpResult:
        return await self._request(f"set mtu {mtu} on {ifname}", ifname, self.ipr.link, "set", "index", mtu=mtu)

    async def refresh_subnet_route(self, ifname, address, netmask, metric) -> None:
        """Re-add the kernel's subnet route with our metric.

        The kernel installs it at metric 0 when the address is added. Add our
        copy first, then drop the metric 0 one.
        """
        network = int(address) & int(netmask)
        destination = IPv4Address(network)
        await self.add_route(ifname, destination, netmask, ZERO, metric)
        await self.delete_route(ifname, destination, netmask, ZERO, 0)
