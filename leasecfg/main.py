"""Command line entry point for leasecfg."""

# pylint: disable=import-error, invalid-name

import asyncio
import json
import logging
import sys

import typer

from leasecfg._version import __version__
from leasecfg.businesslogic import BusinessLogic
from leasecfg.datamodel import ConfSystem, LeaseEvent, NetworkLease
from leasecfg.leasedb import LeaseDB
from leasecfg.osadapter import NetlinkAdapter
from leasecfg.state import StateStore

app = typer.Typer()
logger = logging.getLogger(__name__)


def version_callback(value: bool):
    """Print the version and exit."""
    if value:
        typer.echo(f"leasecfg version: {__version__}")
        raise typer.Exit


def setup_logging(log: str | None, logfile: str | None) -> None:
    numeric_level = logging.INFO
    if log:
        numeric_level = getattr(logging, log.upper(), None)
    if not isinstance(numeric_level, int):
        raise typer.BadParameter(f"Invalid log level: {log}")
    if logfile:
        logging.basicConfig(
            filename=logfile,
            encoding="utf-8",
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            level=numeric_level,
        )
    else:
        logging.basicConfig(
            stream=sys.stdout,
            encoding="utf-8",
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            level=numeric_level,
        )


def load_config(config: typer.FileText, log: str | None, logfile: str | None) -> LeaseDB:
    cdb = LeaseDB(json.loads(config.read()))
    sys_conf: ConfSystem = cdb.get("/system")
    setup_logging(log or sys_conf.log_level, logfile or sys_conf.log_file)
    logger.debug("Configuration %s", cdb.dump())
    return cdb


def parse_lease(data: dict) -> NetworkLease:
    """A lease file holds either a lease or a DHCP ACK's address and options."""
    if "yiaddr" in data:
        options = [tuple(o) if isinstance(o, list) else o for o in data.get("options", [])]
        return NetworkLease.from_dhcp_options(data["yiaddr"], options)
    return NetworkLease.model_validate(data)


async def create_adapter(sys_conf: ConfSystem):
    if sys_conf.backend == "vpp":
        from leasecfg.vppadapter import VPPAdapter  # pylint: disable=import-outside-toplevel

        return await VPPAdapter.create()
    return NetlinkAdapter()


async def run(cdb: LeaseDB, interface: str, lease: NetworkLease) -> None:
    sys_conf: ConfSystem = cdb.get("/system")
    adapter = await create_adapter(sys_conf)
    store = StateStore(sys_conf.state_dir) if sys_conf.state_dir else None
    try:
        _ = BusinessLogic(adapter, cdb, store)
        await cdb.publish("/ops/lease", LeaseEvent(interface=interface, lease=lease))
        logger.info("%s: %s", interface, cdb.get(f"/ops/transitions/{interface}").value)
    finally:
        await adapter.close()


def main_coroutine(cdb: LeaseDB, interface: str, lease: NetworkLease) -> None:
    try:
        asyncio.run(run(cdb, interface, lease))
    except Exception as e:
        logger.exception("Failed to apply lease on %s: %s", interface, e)
        raise typer.Exit(code=1) from e


@app.callback()
def callback(
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True),  # pylint: disable=unused-argument
) -> None:
    """Apply DHCP leases to network interfaces."""


@app.command()
def apply(
    config: typer.FileText,
    lease: typer.FileText,
    interface: str = typer.Option(..., "--interface", "-i"),
    log: str = None,
    logfile: str = None,
) -> None:
    """Apply the lease in LEASE to an interface."""
    cdb = load_config(config, log, logfile)
    main_coroutine(cdb, interface, parse_lease(json.loads(lease.read())))


@app.command()
def release(
    config: typer.FileText,
    interface: str = typer.Option(..., "--interface", "-i"),
    log: str = None,
    logfile: str = None,
) -> None:
    """Remove everything a previous lease installed on an interface."""
    cdb = load_config(config, log, logfile)
    main_coroutine(cdb, interface, NetworkLease())


@app.command()
def show(
    config: typer.FileText,
    interface: str = typer.Option(..., "--interface", "-i"),
) -> None:
    """Print the persisted state of an interface."""
    cdb = LeaseDB(json.loads(config.read()))
    sys_conf: ConfSystem = cdb.get("/system")
    session = StateStore(sys_conf.state_dir).load(interface) if sys_conf.state_dir else None
    if session is None:
        typer.echo(f"{interface}: not managed")
        raise typer.Exit(code=1)
    typer.echo(session.model_dump_json(indent=4))


if __name__ == "__main__":
    app()
