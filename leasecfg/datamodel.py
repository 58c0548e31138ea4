"""Lease and interface state model."""

import asyncio
from enum import Enum
from ipaddress import IPv4Address, IPv4Network
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from leasecfg.leasedb import register_leasedb_model

ZERO = IPv4Address("0.0.0.0")  # noqa: S104

DEFAULT_SCRIPT = "/etc/leasecfg/leasecfg.sh"


def prefixlen(netmask: IPv4Address) -> int:
    """Prefix length of a dotted netmask."""
    return IPv4Network(f"0.0.0.0/{netmask}").prefixlen


class TransitionKind(str, Enum):
    """Classification of a reconciliation pass, as seen by hooks."""

    NEW = "new"
    UP = "up"
    DOWN = "down"


class Route(BaseModel):
    """IPv4 route. Two routes are the same route if all three fields match."""

    model_config = ConfigDict(frozen=True)

    destination: IPv4Address
    netmask: IPv4Address
    gateway: IPv4Address = ZERO

    @property
    def is_default(self) -> bool:
        return self.destination == ZERO and self.netmask == ZERO

    @property
    def prefix(self) -> IPv4Network:
        return IPv4Network(f"{self.destination}/{self.netmask}", strict=False)

    def __str__(self) -> str:
        return f"{self.prefix} via {self.gateway}"


class FQDN(BaseModel):
    """Client FQDN option (81) as returned by the server."""

    model_config = ConfigDict(frozen=True)

    flags: int = 0
    rcode1: int = 0
    rcode2: int = 0
    name: str = ""


class NetworkLease(BaseModel):
    """Negotiated parameters for one interface."""

    model_config = ConfigDict(frozen=True)

    address: IPv4Address | None = None
    netmask: IPv4Address = ZERO
    broadcast: IPv4Address = ZERO
    mtu: int | None = None
    routes: list[Route] = Field(default_factory=list)
    dns_servers: list[IPv4Address] = Field(default_factory=list)
    dns_domain: str | None = None
    dns_search: str | None = None
    ntp_servers: list[IPv4Address] = Field(default_factory=list)
    nis_domain: str | None = None
    nis_servers: list[IPv4Address] = Field(default_factory=list)
    hostname: str | None = None
    fqdn: FQDN | None = None
    root_path: str | None = None
    lease_time: int = 0
    renewal_time: int = 0
    rebind_time: int = 0
    server_address: IPv4Address = ZERO
    server_name: str = ""

    @property
    def has_address(self) -> bool:
        return self.address is not None and self.address != ZERO

    @classmethod
    def from_dhcp_options(cls, yiaddr, options: list) -> "NetworkLease":
        """Build a lease from decoded DHCPv4 options.

        ``options`` is the list form used by scapy's DHCP layer: tuples of
        ``(name, value, ...)`` with optional bare strings such as ``"end"``.
        """
        opts = options2dict(options)
        netmask = first(opts.get("subnet_mask")) or ZERO
        address = IPv4Address(str(yiaddr))

        routes = []
        if "classless_static_routes" in opts:
            # RFC 3442: option 121 overrides both option 33 and the router option
            for entry in opts["classless_static_routes"]:
                prefix, gateway = text(entry).split(":")
                network = IPv4Network(prefix, strict=False)
                routes.append(Route(destination=network.network_address, netmask=network.netmask, gateway=gateway))
        else:
            static = opts.get("static-routes", [])
            for destination, gateway in zip(static[::2], static[1::2]):
                routes.append(Route(destination=destination, netmask=classful_netmask(destination), gateway=gateway))
            for gateway in opts.get("router", []):
                routes.append(Route(destination=ZERO, netmask=ZERO, gateway=gateway))

        broadcast = first(opts.get("broadcast_address"))
        if broadcast is None and netmask != ZERO:
            broadcast = IPv4Network(f"{address}/{netmask}", strict=False).broadcast_address

        search = opts.get("domain-search") or opts.get("domain_search")
        return cls(
            address=address,
            netmask=netmask,
            broadcast=broadcast or ZERO,
            mtu=first(opts.get("interface-mtu")),
            routes=routes,
            dns_servers=opts.get("name_server", []),
            dns_domain=text(first(opts.get("domain"))),
            dns_search=" ".join(text(s) for s in search) if search else None,
            ntp_servers=opts.get("NTP_server", []),
            nis_domain=text(first(opts.get("NIS_domain"))),
            nis_servers=opts.get("NIS_server", []),
            hostname=text(first(opts.get("hostname"))),
            root_path=text(first(opts.get("root_disk_path"))),
            lease_time=first(opts.get("lease_time")) or 0,
            renewal_time=first(opts.get("renewal_time")) or 0,
            rebind_time=first(opts.get("rebinding_time")) or 0,
            server_address=first(opts.get("server_id")) or ZERO,
        )


def options2dict(options: list) -> dict:
    """Map option name to the list of its values."""
    o = {}
    for op in options:
        if isinstance(op, tuple) and len(op) > 1:
            values = op[1:]
            if len(values) == 1 and isinstance(values[0], (list, tuple)):
                values = values[0]
            o[op[0]] = list(values)
    return o


def first(values):
    """First element of an option value list, or None."""
    if not values:
        return None
    return values[0]


def text(value) -> str | None:
    """Option payloads arrive as bytes or str. Trailing NULs are dropped."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value.rstrip("\0")


def classful_netmask(destination) -> IPv4Address:
    """Netmask implied by the address class (option 33 routes carry none)."""
    first_octet = int(IPv4Address(str(destination))) >> 24
    if first_octet < 128:
        return IPv4Address("255.0.0.0")
    if first_octet < 192:
        return IPv4Address("255.255.0.0")
    return IPv4Address("255.255.255.0")


class PreviousState(BaseModel):
    """What the reconciler last applied to an interface."""

    address: IPv4Address | None = None
    netmask: IPv4Address | None = None
    mtu: int | None = None
    routes: list[Route] = Field(default_factory=list)


class InterfaceSession(BaseModel):
    """Per-interface reconciliation session.

    Created on the first lease for an interface and dropped when the
    interface is no longer managed. Only one reconciliation may run against a
    session at a time; ``lock`` serialises them.
    """

    name: str
    hwaddr: str = ""
    natural_mtu: int | None = None
    previous: PreviousState = Field(default_factory=PreviousState)
    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock


class InterfaceInfo(BaseModel):
    """Host interface information reported by an OS adapter."""

    name: str
    index: int
    mac: str
    mtu: int


class LeaseEvent(BaseModel):
    """Lease handed over by a DHCP client for one interface."""

    interface: str
    lease: NetworkLease


@register_leasedb_model("system")
class ConfSystem(BaseModel):
    """Global configuration."""

    model_config = ConfigDict(populate_by_name=True)
    log_level: str = Field(alias="log-level", default="info")
    log_file: str | None = Field(alias="log-file", default=None)
    state_dir: str | None = Field(alias="state-dir", default="/var/lib/leasecfg")
    backend: Literal["netlink", "vpp"] = "netlink"


@register_leasedb_model("reconciler")
class ConfReconciler(BaseModel):
    """What the reconciler is allowed to touch."""

    model_config = ConfigDict(populate_by_name=True)
    install_default_route: bool = Field(alias="install-default-route", default=True)
    manage_mtu: bool = Field(alias="manage-mtu", default=True)
    manage_dns: bool = Field(alias="manage-dns", default=True)
    manage_ntp: bool = Field(alias="manage-ntp", default=True)
    manage_nis: bool = Field(alias="manage-nis", default=True)
    manage_hostname: bool = Field(alias="manage-hostname", default=False)
    route_metric: int = Field(alias="route-metric", default=0, ge=0)
    hook_script: str | None = Field(alias="hook-script", default=DEFAULT_SCRIPT)
    # May contain {interface}. None disables the info export.
    info_file: str | None = Field(alias="info-file", default=None)
    class_id: str | None = Field(alias="class-id", default=None)
    client_id: str | None = Field(alias="client-id", default=None)

    def info_path(self, ifname: str) -> str | None:
        if not self.info_file:
            return None
        return self.info_file.format(interface=ifname)
