import json
from unittest.mock import AsyncMock

import pytest
from typer.testing import CliRunner

from leasecfg import main
from leasecfg._version import __version__
from leasecfg.datamodel import InterfaceInfo, NetworkLease
from leasecfg.osadapter import OpResult, OSAdapter

runner = CliRunner()


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "leasecfg.json"
    path.write_text(
        json.dumps(
            {
                "system": {"state-dir": str(tmp_path / "state"), "log-level": "debug"},
                "reconciler": {"hook-script": None, "manage-nis": False},
                "services": {"resolvconf": None, "resolv-file": str(tmp_path / "resolv.conf")},
            }
        )
    )
    return str(path)


@pytest.fixture
def adapter(monkeypatch):
    adapter = AsyncMock(spec=OSAdapter)
    adapter.interface_info.return_value = InterfaceInfo(name="eth0", index=2, mac="aa:bb:cc:dd:ee:ff", mtu=1500)
    for name in ("add_address", "delete_address", "add_route", "delete_route", "set_mtu"):
        getattr(adapter, name).return_value = OpResult.OK
    monkeypatch.setattr(main, "NetlinkAdapter", lambda: adapter)
    return adapter


def test_version():
    result = runner.invoke(main.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_parse_lease_from_options():
    lease = main.parse_lease(
        {"yiaddr": "10.0.0.5", "options": [["subnet_mask", "255.255.255.0"], ["router", "10.0.0.1"], "end"]}
    )
    assert str(lease.address) == "10.0.0.5"
    assert len(lease.routes) == 1


def test_parse_lease_plain():
    lease = main.parse_lease({"address": "10.0.0.5", "netmask": "255.255.255.0", "mtu": 1400})
    assert lease == NetworkLease(address="10.0.0.5", netmask="255.255.255.0", mtu=1400)


def test_apply_show_release(config, adapter, tmp_path):
    lease = tmp_path / "lease.json"
    lease.write_text(json.dumps({"yiaddr": "10.0.0.5", "options": [["subnet_mask", "255.255.255.0"]]}))

    result = runner.invoke(main.app, ["apply", config, str(lease), "-i", "eth0"])
    assert result.exit_code == 0, result.output
    adapter.add_address.assert_awaited_once()
    adapter.close.assert_awaited_once()

    result = runner.invoke(main.app, ["show", config, "-i", "eth0"])
    assert result.exit_code == 0
    assert json.loads(result.output)["previous"]["address"] == "10.0.0.5"

    result = runner.invoke(main.app, ["release", config, "-i", "eth0"])
    assert result.exit_code == 0, result.output
    adapter.delete_address.assert_awaited_once()


def test_show_unmanaged(config):
    result = runner.invoke(main.app, ["show", config, "-i", "eth9"])
    assert result.exit_code == 1
    assert "not managed" in result.output


def test_apply_failure_exits(config, adapter, tmp_path):
    adapter.add_address.return_value = OpResult.ERROR
    lease = tmp_path / "lease.json"
    lease.write_text(json.dumps({"address": "10.0.0.5", "netmask": "255.255.255.0"}))

    result = runner.invoke(main.app, ["apply", config, str(lease), "-i", "eth0"])

    assert result.exit_code == 1
    adapter.close.assert_awaited_once()
