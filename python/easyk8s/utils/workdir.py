"""
easyk8s/utils/workdir.py

Manages a cluster's on-disk provisioning state: `<state_root>/<name>/terraform`.

The directory is created on the first provisioning call and reused afterwards
so that tofu can pick up its state for idempotent re-runs. Templates are
copied from `<modules_dir>/<provider>` each time; stale `.tf` / `.tpl` files
are removed first so deleted templates do not linger. Local state, lock files
and the `.terraform` plugin cache are never overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import stat
from typing import Any, Dict

import aiofiles

from easyk8s.errors import PreconditionError
from easyk8s.utils.terraform import STATE_FILE, TFVARS_FILE

logger = logging.getLogger(__name__)

_COPY_IGNORE = shutil.ignore_patterns(
    ".terraform",
    ".git",
    ".terraform.lock.hcl",
    "*.tfstate",
    "*.tfstate.backup",
    "tfplan",
)
_TEMPLATE_SUFFIXES = (".tf", ".tpl")


def template_dir(modules_dir: str, provider: str) -> str:
    return os.path.join(os.path.expanduser(modules_dir), provider)


def _remove_stale_templates(work_dir: str) -> None:
    for entry in os.listdir(work_dir):
        path = os.path.join(work_dir, entry)
        if os.path.isfile(path) and entry.endswith(_TEMPLATE_SUFFIXES):
            os.remove(path)


def _fix_provider_permissions(work_dir: str) -> None:
    """Make downloaded terraform-provider-* binaries executable again.

    Copies and some archive tools drop the execute bit; tofu then fails with
    a confusing "permission denied". Failures are logged, not raised.
    """
    plugin_root = os.path.join(work_dir, ".terraform", "providers")
    if not os.path.isdir(plugin_root):
        return
    for dirpath, _dirnames, filenames in os.walk(plugin_root):
        for name in filenames:
            if not name.startswith("terraform-provider-"):
                continue
            path = os.path.join(dirpath, name)
            try:
                mode = os.stat(path).st_mode
                os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            except OSError as exc:
                logger.warning("Could not fix permissions on %s: %s", path, exc)


def prepare_workdir(work_dir: str, source_dir: str) -> str:
    """Create `work_dir` if needed and refresh its templates from `source_dir`.

    Raises:
        PreconditionError: If `source_dir` does not exist.
    """
    if not os.path.isdir(source_dir):
        raise PreconditionError(f"Provider templates not found: {source_dir}")

    os.makedirs(work_dir, mode=0o755, exist_ok=True)
    _remove_stale_templates(work_dir)
    shutil.copytree(source_dir, work_dir, ignore=_COPY_IGNORE, dirs_exist_ok=True)
    _fix_provider_permissions(work_dir)
    return work_dir


async def write_tfvars(work_dir: str, variables: Dict[str, Any]) -> str:
    """Write the flat variables map as terraform.tfvars.json and return its path."""
    path = os.path.join(work_dir, TFVARS_FILE)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(variables, indent=2, sort_keys=True) + "\n")
    os.chmod(path, 0o600)
    return path


def state_exists(work_dir: str) -> bool:
    return os.path.isfile(os.path.join(work_dir, STATE_FILE))


def remove_cluster_dir(cluster_dir: str) -> None:
    """Remove all local state of a cluster. Missing directories are ignored."""
    if os.path.isdir(cluster_dir):
        shutil.rmtree(cluster_dir)
        logger.info("Removed local state %s", cluster_dir)
