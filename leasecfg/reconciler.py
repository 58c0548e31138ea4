"""Lease reconciliation.

Moves an interface from what the previous lease installed to what the new
lease asks for. The order of OS calls matters:

1. routes we own that the new lease no longer wants are removed
2. MTU
3. the new address is added, then the old one is deleted
4. routes from the new lease are added
5. the snapshot is committed, then downstream services and hooks run

Without an address (lease expired or released) everything we own is removed
and the snapshot is cleared.
"""

import logging
from ipaddress import IPv4Address

from leasecfg.datamodel import (
    ZERO,
    ConfReconciler,
    InterfaceSession,
    NetworkLease,
    PreviousState,
    Route,
    TransitionKind,
)
from leasecfg.dispatcher import Dispatcher
from leasecfg.osadapter import OpResult, OSAdapter
from leasecfg.state import StateStore

logger = logging.getLogger(__name__)

MTU_MIN = 576
MTU_MAX = 65535
HOST_NETMASK = IPv4Address("255.255.255.255")


class ReconcileError(Exception):
    """Reconciliation could not complete."""


class LeaseInputError(ReconcileError):
    """Reconcile called with something that is not a session, lease or policy."""


class AddressInstallError(ReconcileError):
    """The new address could not be added to the interface."""


def valid_mtu(mtu: int | None) -> bool:
    return mtu is not None and MTU_MIN <= mtu <= MTU_MAX


def _has_address(address: IPv4Address | None) -> bool:
    return address is not None and address != ZERO


class Reconciler:
    """Applies leases to interfaces through an OS adapter."""

    def __init__(
        self,
        adapter: OSAdapter,
        policy: ConfReconciler,
        dispatcher: Dispatcher | None = None,
        store: StateStore | None = None,
    ) -> None:
        if not isinstance(policy, ConfReconciler):
            raise LeaseInputError(f"Invalid policy: {policy!r}")
        self.adapter = adapter
        self.policy = policy
        self.dispatcher = dispatcher
        self.store = store

    def wanted_routes(self, lease: NetworkLease) -> list[Route]:
        """Lease routes we are allowed to install."""
        if self.policy.install_default_route:
            return list(lease.routes)
        return [r for r in lease.routes if not r.is_default]

    async def reconcile(self, session: InterfaceSession, lease: NetworkLease) -> TransitionKind:
        """Apply ``lease`` to the session's interface and return the transition kind.

        Raises AddressInstallError if the new address cannot be added; the
        snapshot still records what is left installed.
        """
        if not isinstance(session, InterfaceSession):
            raise LeaseInputError(f"Invalid session: {session!r}")
        if not isinstance(lease, NetworkLease):
            raise LeaseInputError(f"Invalid lease: {lease!r}")

        async with session.lock:
            if not lease.has_address:
                return await self._release(session)
            return await self._apply(session, lease)

    async def remove_stale_routes(
        self, ifname: str, routes: list[Route], wanted: list[Route], invalidate: bool = False
    ) -> list[Route]:
        """Delete owned routes not in ``wanted``. Returns the routes kept.

        Runs on every pass: the interface may carry addresses we did not add,
        so our routes can survive an address change. With ``invalidate`` no
        wanted route is kept. A route whose delete fails stays in the result
        so the next pass tries again.
        """
        kept = []
        for route in routes:
            if not invalidate and route in wanted:
                kept.append(route)
                continue
            if route.destination != ZERO or self.policy.install_default_route:
                result = await self.adapter.delete_route(
                    ifname, route.destination, route.netmask, route.gateway, self.policy.route_metric
                )
                if result == OpResult.ERROR:
                    logger.warning("%s: could not remove route %s, still tracking it", ifname, route)
                    kept.append(route)
        return kept

    async def add_routes(
        self, ifname: str, wanted: list[Route], kept: list[Route], previous: list[Route]
    ) -> list[Route]:
        """Install ``wanted`` routes not already owned. Returns the owned set in lease order."""
        owned = []
        for route in wanted:
            if route in owned:
                continue
            if route in kept:
                owned.append(route)
                continue
            result = await self.adapter.add_route(
                ifname, route.destination, route.netmask, route.gateway, self.policy.route_metric
            )
            if result == OpResult.ERROR:
                logger.error("%s: failed to add route %s", ifname, route)
                continue
            if result == OpResult.EXISTS:
                if route in previous:
                    logger.debug("%s: route %s still installed", ifname, route)
                else:
                    logger.info("%s: route %s already present, taking ownership", ifname, route)
            owned.append(route)
        return owned

    async def _set_mtu(self, session: InterfaceSession, lease: NetworkLease) -> int | None:
        """Bring the MTU to the lease's value, or back to the natural one."""
        current = session.previous.mtu
        if not self.policy.manage_mtu:
            return current
        target = lease.mtu if valid_mtu(lease.mtu) else session.natural_mtu
        if lease.mtu and not valid_mtu(lease.mtu):
            logger.warning("%s: ignoring invalid MTU %d", session.name, lease.mtu)
        if target is None or target == current:
            return current
        if await self.adapter.set_mtu(session.name, target) == OpResult.OK:
            return target
        return current

    def commit(self, session: InterfaceSession, state: PreviousState) -> None:
        """Replace the session snapshot and persist it."""
        session.previous = state
        if self.store is None:
            return
        try:
            self.store.save(session)
        except OSError as e:
            logger.error("%s: could not persist state: %s", session.name, e)

    async def _release(self, session: InterfaceSession) -> TransitionKind:
        ifname = session.name
        previous = session.previous
        logger.info("%s: lease lost, removing configuration", ifname)

        await self.remove_stale_routes(ifname, previous.routes, [], invalidate=True)

        mtu = previous.mtu
        if session.natural_mtu and previous.mtu != session.natural_mtu:
            if await self.adapter.set_mtu(ifname, session.natural_mtu) == OpResult.OK:
                mtu = session.natural_mtu

        had_address = _has_address(previous.address)
        if had_address:
            await self.adapter.delete_address(ifname, previous.address, previous.netmask)

        self.commit(session, PreviousState(mtu=mtu))

        if had_address and self.dispatcher:
            await self.dispatcher.down(session)
        return TransitionKind.DOWN

    async def _apply(self, session: InterfaceSession, lease: NetworkLease) -> TransitionKind:
        ifname = session.name
        previous = session.previous
        changed = previous.address != lease.address or previous.netmask != lease.netmask
        wanted = self.wanted_routes(lease)

        # A new address invalidates every route installed for the old one
        kept = await self.remove_stale_routes(ifname, previous.routes, wanted, invalidate=changed)

        mtu = await self._set_mtu(session, lease)

        if changed:
            logger.info("%s: adding address %s/%s", ifname, lease.address, lease.netmask)
            result = await self.adapter.add_address(ifname, lease.address, lease.netmask, lease.broadcast)
            if result == OpResult.ERROR:
                self.commit(
                    session, PreviousState(address=previous.address, netmask=previous.netmask, mtu=mtu, routes=kept)
                )
                raise AddressInstallError(f"{ifname}: failed to add address {lease.address}/{lease.netmask}")

            if _has_address(previous.address):
                logger.info("%s: deleting old address %s/%s", ifname, previous.address, previous.netmask)
                await self.adapter.delete_address(ifname, previous.address, previous.netmask)

            if self.policy.route_metric > 0 and lease.netmask != HOST_NETMASK:
                await self.adapter.refresh_subnet_route(ifname, lease.address, lease.netmask, self.policy.route_metric)

        owned = await self.add_routes(ifname, wanted, kept, previous.routes)
        # Routes we failed to remove are still installed
        owned += [r for r in kept if r not in owned]

        self.commit(
            session, PreviousState(address=lease.address, netmask=lease.netmask, mtu=mtu, routes=owned)
        )

        kind = TransitionKind.NEW if changed else TransitionKind.UP
        if self.dispatcher:
            await self.dispatcher.up(session, lease, kind)
        return kind
