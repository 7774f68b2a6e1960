import asyncio
import os

import pytest
import yaml

from easyk8s.errors import ResolutionError
from easyk8s.kubeconfig import (
    context_name,
    patch_kubeconfig,
    rename_entries,
    resolve_endpoint,
    save_kubeconfig,
    server_url,
    write_kubeconfig,
)
from easyk8s.models.nodes import Endpoint, EndpointCandidates
from easyk8s.tests.fakes import RAW_KUBECONFIG


def test_load_balancer_wins_over_virtual_ip_and_leader():
    candidates = EndpointCandidates(
        load_balancer="lb.example.com", virtual_ip="10.0.0.100", leader="10.0.1.10"
    )
    assert resolve_endpoint(candidates) == Endpoint(address="lb.example.com", port=6443)


def test_virtual_ip_wins_over_leader():
    candidates = EndpointCandidates(virtual_ip="192.168.1.100", leader="192.168.1.11")
    assert resolve_endpoint(candidates, port=9345).address == "192.168.1.100"
    assert resolve_endpoint(candidates, port=9345).port == 9345


def test_leader_is_the_last_resort():
    assert resolve_endpoint(EndpointCandidates(leader="10.0.1.10")).address == "10.0.1.10"


def test_no_candidate_raises_resolution_error():
    with pytest.raises(ResolutionError):
        resolve_endpoint(EndpointCandidates())


def test_patch_replaces_only_the_server_host():
    endpoint = Endpoint(address="lb.example.com", port=6443)
    patched = patch_kubeconfig(RAW_KUBECONFIG, endpoint)

    assert "    server: https://lb.example.com:6443\n" in patched
    assert "127.0.0.1" not in patched
    raw_lines = RAW_KUBECONFIG.splitlines()
    patched_lines = patched.splitlines()
    assert len(raw_lines) == len(patched_lines)
    changed = [i for i, (a, b) in enumerate(zip(raw_lines, patched_lines)) if a != b]
    assert len(changed) == 1
    assert raw_lines[changed[0]].strip() == "server: https://127.0.0.1:6443"


def test_patch_is_idempotent():
    endpoint = Endpoint(address="10.0.0.100")
    once = patch_kubeconfig(RAW_KUBECONFIG, endpoint)
    assert patch_kubeconfig(once, endpoint) == once


def test_patch_brackets_ipv6_hosts():
    patched = patch_kubeconfig(RAW_KUBECONFIG, Endpoint(address="fd00::10"))
    assert "server: https://[fd00::10]:6443" in patched
    again = patch_kubeconfig(patched, Endpoint(address="10.0.0.5"))
    assert "server: https://10.0.0.5:6443" in again


@pytest.mark.parametrize(
    "raw",
    [
        "apiVersion: v1\nkind: Config\n",
        RAW_KUBECONFIG + "- cluster:\n    server: https://10.0.0.9:6443\n",
    ],
)
def test_patch_requires_exactly_one_server_line(raw):
    with pytest.raises(ValueError):
        patch_kubeconfig(raw, Endpoint(address="lb"))


@pytest.mark.parametrize("quote", ['"', "'"])
def test_patch_keeps_a_quoted_server_url_quoted(quote):
    raw = RAW_KUBECONFIG.replace(
        "server: https://127.0.0.1:6443", f"server: {quote}https://127.0.0.1:6443{quote}"
    )
    patched = patch_kubeconfig(raw, Endpoint(address="nlb.example.com"))

    assert f"    server: {quote}https://nlb.example.com:6443{quote}\n" in patched
    assert yaml.safe_load(patched)["clusters"][0]["cluster"]["server"] == (
        "https://nlb.example.com:6443"
    )
    assert server_url(patched) == "https://nlb.example.com:6443"


def test_server_url():
    assert server_url(RAW_KUBECONFIG) == "https://127.0.0.1:6443"
    assert server_url("kind: Config\n") is None


def test_rename_entries_renames_cluster_user_and_context():
    name = context_name("demo")
    renamed = rename_entries(yaml.safe_load(RAW_KUBECONFIG), name)

    assert name == "easyk8s-demo"
    assert [c["name"] for c in renamed["clusters"]] == [name]
    assert [u["name"] for u in renamed["users"]] == [name]
    assert renamed["contexts"][0]["context"] == {"cluster": name, "user": name}
    assert renamed["current-context"] == name
    assert renamed["clusters"][0]["cluster"]["server"] == "https://127.0.0.1:6443"


def test_write_and_save_kubeconfig_use_private_permissions(tmp_path):
    source = str(tmp_path / "a" / "kubeconfig.yaml")
    target = str(tmp_path / "b" / "out.yaml")

    asyncio.run(write_kubeconfig(source, RAW_KUBECONFIG))
    path = asyncio.run(save_kubeconfig(source, target))

    assert path == target
    assert open(target).read() == RAW_KUBECONFIG
    assert os.stat(target).st_mode & 0o777 == 0o600
