import logging

from leasecfg.datamodel import ConfReconciler, InterfaceSession, LeaseEvent, PreviousState, TransitionKind
from leasecfg.dispatcher import Dispatcher
from leasecfg.leasedb import LeaseDB
from leasecfg.osadapter import OSAdapter
from leasecfg.reconciler import Reconciler
from leasecfg.state import StateStore
from leasecfg.writers import ConfServices

logger = logging.getLogger(__name__)


class BusinessLogic:
    """Turns lease events published on the store into reconciliations."""

    def __init__(self, adapter: OSAdapter, cdb: LeaseDB, store: StateStore | None = None, dispatcher=None):
        logger.info("Initializing business logic")
        self.adapter = adapter
        self.cdb = cdb
        self.store = store
        policy: ConfReconciler = cdb.get("/reconciler")
        services: ConfServices = cdb.get("/services")
        self.reconciler = Reconciler(adapter, policy, dispatcher or Dispatcher(policy, services), store)
        self.sessions: dict[str, InterfaceSession] = {}

        self.cdb.subscribe("/ops/lease", self.dhc4_on_lease)

    async def session(self, ifname: str) -> InterfaceSession:
        """Session for ``ifname``, restored from disk or created from the live interface."""
        if ifname in self.sessions:
            return self.sessions[ifname]
        session = self.store.load(ifname) if self.store else None
        if session is None:
            info = await self.adapter.interface_info(ifname)
            logger.debug("Interface info: %s", info)
            session = InterfaceSession(
                name=ifname, hwaddr=info.mac, natural_mtu=info.mtu, previous=PreviousState(mtu=info.mtu)
            )
        self.sessions[ifname] = session
        return session

    def unmanage(self, ifname: str) -> None:
        """Forget an interface. Whatever is installed stays installed."""
        self.sessions.pop(ifname, None)
        if self.store:
            self.store.remove(ifname)

    async def dhc4_on_lease(self, key: str, event: LeaseEvent) -> TransitionKind:
        """DHCPv4 on lease event."""
        logger.info("DHCPv4 on lease for %s: %s", event.interface, event.lease.address)
        session = await self.session(event.interface)
        kind = await self.reconciler.reconcile(session, event.lease)
        self.cdb.set(f"/ops/interfaces/{session.name}", session.previous)
        self.cdb.set(f"/ops/transitions/{session.name}", kind)
        return kind
