"""Lease info export.

The file is meant to be sourced by shell scripts, so every value sits inside
single quotes and free text has its own single quotes escaped.
"""

import logging
from pathlib import Path

from leasecfg.datamodel import NetworkLease

logger = logging.getLogger(__name__)


def cleanmetas(value: str | None) -> str:
    """Make ``value`` safe inside a single-quoted shell word."""
    if not value:
        return ""
    return value.replace("'", "'\\''")


def _addresses(addresses) -> str:
    return " ".join(str(a) for a in addresses)


def render_info(
    ifname: str, hwaddr: str, lease: NetworkLease, class_id: str | None = None, client_id: str | None = None
) -> str:
    """Render the info file for ``lease`` on ``ifname``."""
    lines = [
        f"IPADDR='{lease.address}'",
        f"NETMASK='{lease.netmask}'",
        f"BROADCAST='{lease.broadcast}'",
    ]
    if lease.mtu:
        lines.append(f"MTU='{lease.mtu}'")
    if lease.routes:
        routes = " ".join(f"{r.destination},{r.netmask},{r.gateway}" for r in lease.routes)
        lines.append(f"ROUTES='{routes}'")
    if lease.hostname:
        lines.append(f"HOSTNAME='{cleanmetas(lease.hostname)}'")
    if lease.dns_domain:
        lines.append(f"DNSDOMAIN='{cleanmetas(lease.dns_domain)}'")
    if lease.dns_search:
        lines.append(f"DNSSEARCH='{cleanmetas(lease.dns_search)}'")
    if lease.dns_servers:
        lines.append(f"DNSSERVERS='{_addresses(lease.dns_servers)}'")
    if lease.fqdn:
        lines += [
            f"FQDNFLAGS='{lease.fqdn.flags}'",
            f"FQDNRCODE1='{lease.fqdn.rcode1}'",
            f"FQDNRCODE2='{lease.fqdn.rcode2}'",
            f"FQDNHOSTNAME='{cleanmetas(lease.fqdn.name)}'",
        ]
    if lease.ntp_servers:
        lines.append(f"NTPSERVERS='{_addresses(lease.ntp_servers)}'")
    if lease.nis_domain:
        lines.append(f"NISDOMAIN='{cleanmetas(lease.nis_domain)}'")
    if lease.nis_servers:
        lines.append(f"NISSERVERS='{_addresses(lease.nis_servers)}'")
    if lease.root_path:
        lines.append(f"ROOTPATH='{cleanmetas(lease.root_path)}'")
    lines += [
        f"DHCPSID='{lease.server_address}'",
        f"DHCPSNAME='{cleanmetas(lease.server_name)}'",
        f"LEASETIME='{lease.lease_time}'",
        f"RENEWALTIME='{lease.renewal_time}'",
        f"REBINDTIME='{lease.rebind_time}'",
        f"INTERFACE='{ifname}'",
        f"CLASSID='{cleanmetas(class_id)}'",
        f"CLIENTID='{cleanmetas(client_id) if client_id else hwaddr}'",
        f"DHCPCHADDR='{hwaddr}'",
    ]
    return "\n".join(lines) + "\n"


def write_info(path: str, content: str) -> bool:
    logger.debug("writing %s", path)
    try:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error("write `%s': %s", path, e)
        return False
    return True
