"""Per-interface snapshot persistence."""

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from leasecfg.datamodel import InterfaceSession

logger = logging.getLogger(__name__)


class StateStore:
    """One JSON file per managed interface under ``directory``."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path(self, ifname: str) -> Path:
        return self.directory / f"{ifname}.json"

    def load(self, ifname: str) -> InterfaceSession | None:
        path = self.path(ifname)
        if not path.exists():
            return None
        try:
            return InterfaceSession.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error("Ignoring unreadable state %s: %s", path, e)
            return None

    def save(self, session: InterfaceSession) -> None:
        """Replace the snapshot in one step so readers never see half of it."""
        path = self.path(session.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, ifname: str) -> None:
        self.path(ifname).unlink(missing_ok=True)
