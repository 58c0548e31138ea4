"""Service configuration writers: resolver, time sync and NIS."""

import asyncio
import logging
from ipaddress import IPv4Address
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from leasecfg.hooks import spawn
from leasecfg.leasedb import register_leasedb_model

logger = logging.getLogger(__name__)

NTPDRIFTFILE = "/var/lib/ntp/ntp.drift"
NTPLOGFILE = "/var/log/ntp.log"


class ConfTimeBackend(BaseModel):
    """One NTP configuration file and the service reading it."""

    model_config = ConfigDict(populate_by_name=True)
    path: str
    restart: list[str] = Field(default_factory=list)
    ntpd_style: bool = Field(alias="ntpd-style", default=False)


def _default_time_backends() -> list[ConfTimeBackend]:
    return [
        ConfTimeBackend(path="/etc/ntp.conf", restart=["/etc/init.d/ntpd", "restart"], ntpd_style=True),
        ConfTimeBackend(path="/etc/openntpd/ntpd.conf", restart=["/etc/init.d/ntpd", "restart"]),
    ]


@register_leasedb_model("services")
class ConfServices(BaseModel):
    """Locations of the service configuration files we generate."""

    model_config = ConfigDict(populate_by_name=True)
    resolv_file: str = Field(alias="resolv-file", default="/etc/resolv.conf")
    resolvconf: str | None = Field(alias="resolvconf", default="/sbin/resolvconf")
    ntp: list[ConfTimeBackend] = Field(default_factory=_default_time_backends)
    ntp_drift_file: str = Field(alias="ntp-drift-file", default=NTPDRIFTFILE)
    ntp_log_file: str = Field(alias="ntp-log-file", default=NTPLOGFILE)
    nis_file: str = Field(alias="nis-file", default="/etc/yp.conf")
    nis_restart: list[str] = Field(alias="nis-restart", default_factory=lambda: ["/etc/init.d/ypbind", "restart"])
    domainname: str = Field(alias="domainname", default="domainname")


def replace_file(path: str, content: str) -> bool:
    """Write ``content`` to ``path`` unless it already holds exactly that."""
    p = Path(path)
    try:
        if p.exists() and p.read_text(encoding="utf-8") == content:
            logger.debug("%s already configured, skipping", path)
            return False
        logger.debug("writing %s", path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error("write `%s': %s", path, e)
        return False
    return True


class ResolverWriter:
    """Name resolution: resolvconf when installed, else the resolv file."""

    def __init__(self, resolv_file: str, resolvconf: str | None = None):
        self.resolv_file = resolv_file
        self.resolvconf = resolvconf

    def _has_resolvconf(self) -> bool:
        return bool(self.resolvconf) and Path(self.resolvconf).exists()

    @staticmethod
    def render(ifname: str, domain: str | None, search: str | None, servers: list[IPv4Address]) -> str:
        lines = [f"# Generated by leasecfg for interface {ifname}"]
        if search:
            lines.append(f"search {search}")
        elif domain:
            lines.append(f"search {domain}")
        lines += [f"nameserver {server}" for server in servers]
        return "\n".join(lines) + "\n"

    async def _resolvconf(self, content: str | None, *args: str) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.resolvconf,
                *args,
                stdin=asyncio.subprocess.PIPE if content is not None else asyncio.subprocess.DEVNULL,
            )
            await proc.communicate(content.encode() if content is not None else None)
        except OSError as e:
            logger.error("%s: %s", self.resolvconf, e)
            return False
        if proc.returncode != 0:
            logger.error("%s %s exited with %d", self.resolvconf, " ".join(args), proc.returncode)
            return False
        return True

    async def write(self, ifname: str, domain: str | None, search: str | None, servers: list[IPv4Address]) -> bool:
        content = self.render(ifname, domain, search, servers)
        if self._has_resolvconf():
            logger.debug("sending DNS information to resolvconf")
            return await self._resolvconf(content, "-a", ifname)
        return replace_file(self.resolv_file, content)

    async def restore(self, ifname: str) -> None:
        """Withdraw the interface's resolver information, resolvconf only."""
        if not self._has_resolvconf():
            return
        logger.debug("removing information from resolvconf")
        await self._resolvconf(None, "-d", ifname)


class TimeWriter:
    """NTP configuration for one or more backends."""

    def __init__(self, backends: list[ConfTimeBackend], drift_file: str = NTPDRIFTFILE, log_file: str = NTPLOGFILE):
        self.backends = {b.path: b for b in backends}
        self.drift_file = drift_file
        self.log_file = log_file

    @staticmethod
    def configured_servers(path: str) -> set[str] | None:
        """Servers already listed in ``path``. Empty when the file is missing."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return set()
        except OSError as e:
            logger.error("read `%s': %s", path, e)
            return None
        servers = set()
        for line in text.splitlines():
            tokens = line.split()
            if len(tokens) >= 2 and tokens[0] == "server":
                servers.add(tokens[1])
        return servers

    def render(self, path: str, ifname: str, servers: list[IPv4Address]) -> str:
        backend = self.backends.get(path)
        ntpd = backend is not None and backend.ntpd_style
        lines = [f"# Generated by leasecfg for interface {ifname}"]
        if ntpd:
            lines += ["restrict default noquery notrust nomodify", "restrict 127.0.0.1"]
        for server in servers:
            if ntpd:
                lines.append(f"restrict {server} nomodify notrap noquery")
            lines.append(f"server {server}")
        if ntpd:
            lines += [f"driftfile {self.drift_file}", f"logfile {self.log_file}"]
        return "\n".join(lines) + "\n"

    async def write(self, path: str, ifname: str, servers: list[IPv4Address]) -> bool:
        """Write ``path`` unless it already names every server.

        The daemon has to be restarted to pick up a new file, so an existing
        file listing all our servers is left untouched.
        """
        existing = self.configured_servers(path)
        if existing is None:
            return False
        if servers and {str(s) for s in servers} <= existing:
            logger.debug("%s already configured, skipping", path)
            return False
        return replace_file(path, self.render(path, ifname, servers))


class DirectoryWriter:
    """NIS (yp) client configuration."""

    def __init__(self, path: str, domainname: str = "domainname", spawner=spawn):
        self.path = path
        self.domainname = domainname
        self.spawner = spawner

    @staticmethod
    def render(ifname: str, domain: str | None, servers: list[IPv4Address]) -> str:
        lines = [f"# Generated by leasecfg for interface {ifname}"]
        prefix = "ypserver"
        if domain:
            if servers:
                prefix = f"domain {domain} server"
            else:
                lines.append(f"domain {domain} broadcast")
        lines += [f"{prefix} {server}" for server in servers]
        return "\n".join(lines) + "\n"

    async def write(self, ifname: str, domain: str | None, servers: list[IPv4Address]) -> bool:
        if domain:
            await self.spawner([self.domainname, domain])
        return replace_file(self.path, self.render(ifname, domain, servers))
