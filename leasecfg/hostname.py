"""System hostname helpers."""

import asyncio
import logging
import socket
from ipaddress import IPv4Address

logger = logging.getLogger(__name__)

# Values a freshly installed system carries before anyone picked a name
PLACEHOLDER_HOSTNAMES = {"", "(none)", "localhost"}


class Hostname:
    """Read, set and derive the system hostname."""

    def current(self) -> str:
        return socket.gethostname()

    def set(self, name: str) -> bool:
        logger.info("setting hostname to `%s'", name)
        try:
            socket.sethostname(name)
        except OSError as e:
            logger.error("sethostname: %s", e)
            return False
        return True

    async def reverse(self, address: IPv4Address) -> str | None:
        """Hostname for ``address`` from a reverse lookup, if any."""
        try:
            name, _, _ = await asyncio.to_thread(socket.gethostbyaddr, str(address))
        except OSError as e:
            logger.debug("reverse lookup of %s failed: %s", address, e)
            return None
        # Keep the leading run of printable, non-space characters
        end = 0
        while end < len(name) and ord(name[end]) > 32:
            end += 1
        return name[:end] or None


def is_placeholder(name: str | None) -> bool:
    return (name or "") in PLACEHOLDER_HOSTNAMES
