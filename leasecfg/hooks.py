"""Detached process spawning and the hook script contract."""

import asyncio
import logging
from pathlib import Path

from leasecfg.datamodel import DEFAULT_SCRIPT, TransitionKind

logger = logging.getLogger(__name__)


# Reaper tasks for spawned children. Kept so they are not garbage collected.
_background_tasks = set()


async def _reap(argv: list[str], proc: asyncio.subprocess.Process) -> None:
    rc = await proc.wait()
    logger.debug("%s exited with %s", argv[0], rc)


async def spawn(argv: list[str]) -> bool:
    """Start ``argv`` detached from us. Returns once the process exists.

    The exit status is only logged; nobody waits on it.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except FileNotFoundError:
        logger.debug("%s: not found", argv[0])
        return False
    except OSError as e:
        logger.error("error executing \"%s\": %s", argv[0], e)
        return False
    task = asyncio.create_task(_reap(argv, proc))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return True


class HookInvoker:
    """Runs the user hook script on transitions.

    The script gets two arguments after its own name: the info file path
    (empty when the info export is off) and the transition kind.
    """

    def __init__(self, spawner=spawn):
        self.spawner = spawner

    async def run(self, script: str | None, info_path: str | None, kind: TransitionKind) -> bool:
        if not script:
            return False
        if not Path(script).is_file():
            if script != DEFAULT_SCRIPT:
                logger.error("`%s': no such file", script)
            return False
        argv = [script, info_path or "", TransitionKind(kind).value]
        logger.debug("exec \"%s\"", " ".join(argv))
        return await self.spawner(argv)
