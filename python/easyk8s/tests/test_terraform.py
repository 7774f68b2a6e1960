import asyncio
import json
import os
import stat
from typing import List

import pytest

from easyk8s.errors import PreconditionError
from easyk8s.tests.fakes import FakeRunner, tofu_outputs
from easyk8s.utils.async_command_runner import CommandError, run_command
from easyk8s.utils.async_retry import async_retry
from easyk8s.utils.terraform import (
    _make_base_command,
    _tofu_error_parser,
    get_outputs,
    output_value,
)
from easyk8s.utils.workdir import prepare_workdir, state_exists, write_tfvars


@pytest.mark.parametrize(
    "action, expected",
    [
        ("init", ["tofu", "init", "-no-color", "-input=false"]),
        ("plan", ["tofu", "plan", "-no-color", "-input=false", "-out=tfplan"]),
        ("apply", ["tofu", "apply", "-no-color", "-input=false", "tfplan"]),
        ("destroy", ["tofu", "destroy", "-no-color", "-auto-approve"]),
        ("output", ["tofu", "output", "-no-color"]),
    ],
)
def test_base_commands(action, expected):
    assert _make_base_command("tofu", action) == expected


def test_error_parser():
    assert "locked" in _tofu_error_parser("Error: Error acquiring the state lock")
    assert _tofu_error_parser("Error: something else") is None


def test_outputs_are_unwrapped():
    runner = FakeRunner().on_json(
        ["tofu", "output"], tofu_outputs(lb_ipv4="203.0.113.1", worker_ips=["10.0.0.2"])
    )
    outputs = asyncio.run(get_outputs("/work", runner=runner))

    assert outputs == {"lb_ipv4": "203.0.113.1", "worker_ips": ["10.0.0.2"]}
    assert output_value(outputs, "worker_ips", List[str]) == ["10.0.0.2"]
    with pytest.raises(KeyError):
        output_value(outputs, "nlb_dns_name", str)
    assert runner.calls[0][-1] == "-json"


def test_empty_state_has_no_outputs():
    assert asyncio.run(get_outputs("/work", runner=FakeRunner())) == {}


def test_run_command_hides_details_when_sensitive():
    runner = FakeRunner().on(["aws"], return_code=2, stderr="secret-token rejected")

    with pytest.raises(CommandError) as info:
        asyncio.run(run_command(["aws", "sts"], runner=runner))
    assert "secret-token" not in str(info.value)
    assert info.value.stderr == "secret-token rejected"
    assert info.value.return_code == 2

    with pytest.raises(CommandError, match="secret-token"):
        asyncio.run(run_command(["aws", "sts"], runner=runner, sensitive=False))


def test_run_command_retries():
    runner = FakeRunner()
    runner.on(["kubectl"], return_code=1)
    runner.on(["kubectl"], stdout="ok")

    out = asyncio.run(run_command(["kubectl", "version"], runner=runner, retries=2, retry_delay=0))

    assert out == "ok"
    assert len(runner.calls) == 2


def test_async_retry_only_retries_selected_errors():
    attempts = []
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    @async_retry(retries=3, delay=2.0, retry_on=(ConnectionError,), sleep=fake_sleep)
    async def flaky():
        attempts.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        asyncio.run(flaky())
    assert len(attempts) == 3
    assert sleeps == [2.0, 2.0]

    @async_retry(retries=3, retry_on=(ConnectionError,), sleep=fake_sleep)
    async def broken():
        attempts.append(1)
        raise KeyError("x")

    attempts.clear()
    with pytest.raises(KeyError):
        asyncio.run(broken())
    assert len(attempts) == 1


def test_prepare_workdir_refreshes_templates_and_keeps_state(tmp_path):
    source = tmp_path / "templates"
    (source / ".terraform").mkdir(parents=True)
    (source / ".terraform" / "cache").write_text("x")
    (source / "main.tf").write_text("resource {}\n")
    (source / "userdata.tpl").write_text("#cloud-config\n")
    (source / "terraform.tfstate").write_text("{}")

    work = tmp_path / "work"
    plugin_dir = work / ".terraform" / "providers" / "hetznercloud"
    plugin_dir.mkdir(parents=True)
    plugin = plugin_dir / "terraform-provider-hcloud"
    plugin.write_text("bin")
    os.chmod(plugin, 0o644)
    (work / "old.tf").write_text("stale\n")
    (work / "terraform.tfstate").write_text('{"version": 4}')

    prepare_workdir(str(work), str(source))

    assert sorted(p.name for p in work.iterdir() if p.is_file()) == [
        "main.tf",
        "terraform.tfstate",
        "userdata.tpl",
    ]
    assert (work / "terraform.tfstate").read_text() == '{"version": 4}'
    assert not (work / ".terraform" / "cache").exists()
    assert os.stat(plugin).st_mode & stat.S_IXUSR
    assert state_exists(str(work))


def test_prepare_workdir_requires_templates(tmp_path):
    with pytest.raises(PreconditionError):
        prepare_workdir(str(tmp_path / "work"), str(tmp_path / "missing"))


def test_tfvars_are_private_json(tmp_path):
    path = asyncio.run(write_tfvars(str(tmp_path), {"b": 2, "a": "x"}))
    assert json.load(open(path)) == {"a": "x", "b": 2}
    assert os.stat(path).st_mode & 0o777 == 0o600
