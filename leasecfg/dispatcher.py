"""Downstream triggers run once the interface state is settled."""

import logging

from leasecfg.datamodel import ConfReconciler, InterfaceSession, NetworkLease, TransitionKind
from leasecfg.hooks import HookInvoker, spawn
from leasecfg.hostname import Hostname, is_placeholder
from leasecfg.infofile import render_info, write_info
from leasecfg.writers import ConfServices, DirectoryWriter, ResolverWriter, TimeWriter

logger = logging.getLogger(__name__)


class Dispatcher:
    """Service writers, hostname, info export and hook script.

    Every step is independent: a failure is logged and the next step runs.
    """

    def __init__(
        self,
        policy: ConfReconciler,
        services: ConfServices | None = None,
        resolver: ResolverWriter | None = None,
        timewriter: TimeWriter | None = None,
        directory: DirectoryWriter | None = None,
        hostname: Hostname | None = None,
        hooks: HookInvoker | None = None,
        spawner=spawn,
    ) -> None:
        services = services or ConfServices()
        self.policy = policy
        self.services = services
        self.spawner = spawner
        self.resolver = resolver or ResolverWriter(services.resolv_file, services.resolvconf)
        self.timewriter = timewriter or TimeWriter(services.ntp, services.ntp_drift_file, services.ntp_log_file)
        self.directory = directory or DirectoryWriter(services.nis_file, services.domainname, spawner)
        self.hostname = hostname or Hostname()
        self.hooks = hooks or HookInvoker(spawner)

    async def up(self, session: InterfaceSession, lease: NetworkLease, kind: TransitionKind) -> None:
        """Lease applied: regenerate service configuration and notify."""
        ifname = session.name
        policy = self.policy

        if policy.manage_dns and lease.dns_servers:
            try:
                await self.resolver.write(ifname, lease.dns_domain, lease.dns_search, lease.dns_servers)
            except Exception as e:
                logger.exception("Error writing resolver configuration: %s", e)
        else:
            logger.debug("no dns information to write")

        if policy.manage_ntp and lease.ntp_servers:
            try:
                await self.update_ntp(ifname, lease)
            except Exception as e:
                logger.exception("Error writing NTP configuration: %s", e)

        if policy.manage_nis and (lease.nis_servers or lease.nis_domain):
            try:
                if await self.directory.write(ifname, lease.nis_domain, lease.nis_servers):
                    await self.spawner(self.services.nis_restart)
            except Exception as e:
                logger.exception("Error writing NIS configuration: %s", e)

        try:
            await self.update_hostname(lease)
        except Exception as e:
            logger.exception("Error setting hostname: %s", e)

        info_path = policy.info_path(ifname)
        if info_path:
            content = render_info(ifname, session.hwaddr, lease, policy.class_id, policy.client_id)
            write_info(info_path, content)

        await self.hooks.run(policy.hook_script, info_path, kind)

    async def down(self, session: InterfaceSession) -> None:
        """Lease gone: withdraw resolver information and notify."""
        try:
            await self.resolver.restore(session.name)
        except Exception as e:
            logger.exception("Error restoring resolver configuration: %s", e)
        # No resolvconf style programs exist for NTP or NIS, their files stay
        await self.hooks.run(self.policy.hook_script, self.policy.info_path(session.name), TransitionKind.DOWN)

    async def update_ntp(self, ifname: str, lease: NetworkLease) -> None:
        """Write every time backend, restarting each changed one once.

        Two backends may share one service. It is restarted only once even
        if both files changed.
        """
        restarted = []
        for backend in self.services.ntp:
            changed = await self.timewriter.write(backend.path, ifname, lease.ntp_servers)
            if not changed or not backend.restart:
                continue
            if backend.restart in restarted:
                logger.debug("%s already restarted", " ".join(backend.restart))
                continue
            await self.spawner(backend.restart)
            restarted.append(backend.restart)

    async def update_hostname(self, lease: NetworkLease) -> None:
        """Apply the lease hostname, or one found by reverse lookup.

        An administrator chosen hostname is only replaced when
        manage-hostname is set.
        """
        newname = lease.hostname
        if self.policy.manage_hostname and not newname:
            newname = await self.hostname.reverse(lease.address)

        current = self.hostname.current()
        if not (self.policy.manage_hostname or is_placeholder(current)):
            return
        if newname and newname != current:
            self.hostname.set(newname)
