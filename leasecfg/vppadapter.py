"""OS primitives for interfaces owned by VPP."""

# pylint: disable=import-error, invalid-name

import asyncio
import logging
from ipaddress import IPv4Network

from vpp_papi.vpp_papi_async import VPPApiClient

from leasecfg.datamodel import ZERO, InterfaceInfo, prefixlen
from leasecfg.osadapter import AdapterError, OpResult, OSAdapter

logger = logging.getLogger(__name__)
logging.getLogger("vpp_papi").setLevel(logging.ERROR)

# vnet/api_errno.h
VNET_API_ERROR_VALUE_EXIST = -103
VNET_API_ERROR_ENTRY_ALREADY_EXISTS = -145
EXISTS_RETVALS = {VNET_API_ERROR_VALUE_EXIST, VNET_API_ERROR_ENTRY_ALREADY_EXISTS}

# sw_interface_set_mtu takes one value per protocol: L3, IP4, IP6, MPLS
MTU_PROTO_L3 = 0

FIB_API_PATH_NH_PROTO_IP4 = 0


def _result(op: str, rv) -> OpResult:
    if rv.retval == 0:
        logger.debug("%s", op)
        return OpResult.OK
    if rv.retval in EXISTS_RETVALS:
        logger.debug("%s: already exists", op)
        return OpResult.EXISTS
    logger.error("%s failed: retval %d", op, rv.retval)
    return OpResult.ERROR


class VPPAdapter(OSAdapter):
    """VPP API wrapper."""

    def __init__(self, vpp=None):
        self.event_queue = asyncio.Queue()
        self.vpp = vpp or VPPApiClient()
        self.ifindexes = {}

    @classmethod
    async def create(cls) -> "VPPAdapter":
        instance = cls()
        logger.debug("Connecting to VPP")
        rv = await instance.vpp.connect("leasecfg", instance.event_queue)
        if rv < 0:
            raise AdapterError(f"Error connecting to VPP: {rv}")
        rv = await instance.vpp.api.show_version()
        logger.debug("VPP version: %s", rv)
        return instance

    async def close(self) -> None:
        await self.vpp.disconnect()

    async def _index(self, ifname: str) -> int:
        if ifname in self.ifindexes:
            return self.ifindexes[ifname]
        _, interface_details = await self.vpp.api.sw_interface_dump(name_filter_valid=1, name_filter=ifname)
        if len(interface_details) != 1:
            raise AdapterError(f"Interface {ifname} not found")
        self.ifindexes[ifname] = interface_details[0].sw_if_index
        return self.ifindexes[ifname]

    async def _lookup(self, op: str, ifname: str) -> int | None:
        """Interface index for a primitive, None (logged) when it is gone."""
        try:
            return await self._index(ifname)
        except AdapterError as e:
            logger.error("%s failed: %s", op, e)
            return None

    async def interface_info(self, ifname: str) -> InterfaceInfo:
        ifindex = await self._index(ifname)
        _, interface_details = await self.vpp.api.sw_interface_dump(sw_if_index=ifindex)
        details = interface_details[0]
        return InterfaceInfo(name=ifname, index=ifindex, mac=str(details.l2_address), mtu=details.link_mtu)

    async def _address(self, ifname, address, netmask, add: bool) -> OpResult:
        op = f"{'add' if add else 'delete'} address {address}/{prefixlen(netmask)} on {ifname}"
        ifindex = await self._lookup(op, ifname)
        if ifindex is None:
            return OpResult.ERROR
        rv = await self.vpp.api.sw_interface_add_del_address(
            sw_if_index=ifindex,
            is_add=add,
            del_all=False,
            prefix=f"{address}/{prefixlen(netmask)}",
        )
        return _result(op, rv)

    async def add_address(self, ifname, address, netmask, broadcast) -> OpResult:
        return await self._address(ifname, address, netmask, add=True)

    async def delete_address(self, ifname, address, netmask) -> OpResult:
        return await self._address(ifname, address, netmask, add=False)

    async def _route(self, ifname, destination, netmask, gateway, metric, add: bool) -> OpResult:
        prefix = IPv4Network(f"{destination}/{netmask}", strict=False)
        op = f"{'add' if add else 'delete'} route {prefix} via {gateway} on {ifname}"
        ifindex = await self._lookup(op, ifname)
        if ifindex is None:
            return OpResult.ERROR
        path = {
            "weight": 1,
            # FIB path preference is the closest VPP has to a metric
            "preference": metric,
            "table_id": 0,
            "nh": {"address": {"ip4": gateway or ZERO}},
            "next_hop_id": 0xFFFFFFFF,
            "sw_if_index": ifindex,
            "rpf_id": 0,
            "proto": FIB_API_PATH_NH_PROTO_IP4,
            "type": 0,  # FIB_PATH_TYPE_NORMAL
            "flags": 0,  # FIB_PATH_FLAG_NONE
            "n_labels": 0,
            "label_stack": [0] * 16,
        }
        rv = await self.vpp.api.ip_route_add_del_v2(
            route={
                "table_id": 0,
                "prefix": str(prefix),
                "n_paths": 1,
                "paths": [path],
                "src": 0,
            },
            is_add=add,
            is_multipath=0,
        )
        return _result(op, rv)

    async def add_route(self, ifname, destination, netmask, gateway, metric) -> OpResult:
        return await self._route(ifname, destination, netmask, gateway, metric, add=True)

    async def delete_route(self, ifname, destination, netmask, gateway, metric) -> OpResult:
        return await self._route(ifname, destination, netmask, gateway, metric, add=False)

    async def set_mtu(self, ifname, mtu) -> OpResult:
        op = f"set mtu {mtu} on {ifname}"
        ifindex = await self._lookup(op, ifname)
        if ifindex is None:
            return OpResult.ERROR
        mtus = [0, 0, 0, 0]
        mtus[MTU_PROTO_L3] = mtu
        rv = await self.vpp.api.sw_interface_set_mtu(sw_if_index=ifindex, mtu=mtus)
        return _result(op, rv)
