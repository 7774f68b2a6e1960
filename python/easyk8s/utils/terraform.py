"""
easyk8s/utils/terraform.py

Implements the OpenTofu commands used by the providers (init, plan, apply,
destroy, output), plus helpers for building command arrays. Every command
runs inside a cluster's working directory, with TF_IN_AUTOMATION set and
colour disabled. Known stderr patterns (missing credentials, held state lock)
are turned into short messages by passing an `error_parser` to `run_command`.

The functions raise CommandError; providers wrap it into BackendError.

Exports:
    - init_tofu
    - plan_tofu
    - apply_tofu
    - destroy_tofu
    - get_outputs
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type, TypeVar

from easyk8s.models.validator import parse_json_as, validate_type
from easyk8s.utils.async_command_runner import CommandRunner, run_command

T = TypeVar("T")

PLAN_FILE = "tfplan"
STATE_FILE = "terraform.tfstate"
TFVARS_FILE = "terraform.tfvars.json"


def _tofu_error_parser(stderr: str) -> Optional[str]:
    """Parse tofu stderr for well-known failures, returning a short message if found."""
    low = stderr.lower()
    if "no valid credential sources" in low or "invalid token" in low:
        return "Provider credentials were rejected or not found."
    if "error acquiring the state lock" in low:
        return (
            "The tofu state is locked by another process. "
            "Concurrent runs against one cluster are not supported."
        )
    if "output" in low and "not found" in low:
        return "Requested output not found in tofu state."
    return None


def _make_base_command(binary: str, action: str) -> List[str]:
    """Builds the initial tofu command for `action`.

    Args:
        binary: "tofu" or "terraform".
        action: "init", "plan", "apply", "destroy" or "output".

    Returns:
        A list of command tokens, e.g. ["tofu","destroy","-no-color","-auto-approve"].
    """
    base = [binary, action, "-no-color"]

    input_flags = ["-input=false"] if action in ("init", "plan", "apply") else []
    plan_flags = [f"-out={PLAN_FILE}"] if action == "plan" else []
    destroy_flags = ["-auto-approve"] if action == "destroy" else []
    # a saved plan is applied without prompting
    apply_flags = [PLAN_FILE] if action == "apply" else []

    return base + input_flags + plan_flags + destroy_flags + apply_flags


async def _tofu_command(
    action: str,
    work_dir: str,
    *,
    binary: str,
    runner: Optional[CommandRunner],
    env: Optional[Dict[str, str]],
    extra_args: Optional[List[str]] = None,
    sensitive: bool = True,
    retries: int = 1,
) -> str:
    """
    Internal runner for 'tofu <action>' inside `work_dir`.

    Args:
        action: The tofu subcommand.
        work_dir: Directory holding the copied templates and state.
        binary: tofu executable name or path.
        runner: CommandRunner to execute with.
        env: Additional environment variables (credentials, AWS_REGION).
        extra_args: Tokens appended after the base command.
        sensitive: If True => do not show full command or stdout/stderr in errors.
        retries: Number of attempts.

    Returns:
        str: The captured stdout.

    Raises:
        CommandError: If the command fails after all retries.
    """
    final_env = {"TF_IN_AUTOMATION": "1", **(env or {})}
    cmd = _make_base_command(binary, action) + (extra_args or [])
    return await run_command(
        cmd,
        runner=runner,
        sensitive=sensitive,
        env=final_env,
        cwd=work_dir,
        retries=retries,
        error_parser=_tofu_error_parser,
    )


async def init_tofu(
    work_dir: str,
    *,
    binary: str = "tofu",
    runner: Optional[CommandRunner] = None,
    env: Optional[Dict[str, str]] = None,
    retries: int = 1,
) -> None:
    """Run 'tofu init' in the working directory."""
    await _tofu_command(
        "init", work_dir, binary=binary, runner=runner, env=env, retries=retries
    )


async def plan_tofu(
    work_dir: str,
    *,
    binary: str = "tofu",
    runner: Optional[CommandRunner] = None,
    env: Optional[Dict[str, str]] = None,
) -> None:
    """Run 'tofu plan -out=tfplan'. Variables come from terraform.tfvars.json."""
    await _tofu_command("plan", work_dir, binary=binary, runner=runner, env=env)


async def apply_tofu(
    work_dir: str,
    *,
    binary: str = "tofu",
    runner: Optional[CommandRunner] = None,
    env: Optional[Dict[str, str]] = None,
) -> None:
    """Apply the saved plan produced by plan_tofu."""
    await _tofu_command("apply", work_dir, binary=binary, runner=runner, env=env)


async def destroy_tofu(
    work_dir: str,
    *,
    binary: str = "tofu",
    runner: Optional[CommandRunner] = None,
    env: Optional[Dict[str, str]] = None,
) -> None:
    """Run 'tofu destroy -auto-approve'."""
    await _tofu_command("destroy", work_dir, binary=binary, runner=runner, env=env)


async def get_outputs(
    work_dir: str,
    *,
    binary: str = "tofu",
    runner: Optional[CommandRunner] = None,
    env: Optional[Dict[str, str]] = None,
    retries: int = 1,
) -> Dict[str, Any]:
    """Return every output as a name -> value map ('tofu output -json')."""
    raw = await _tofu_command(
        "output",
        work_dir,
        binary=binary,
        runner=runner,
        env=env,
        extra_args=["-json"],
        retries=retries,
    )
    if not raw.strip():
        return {}
    outputs = parse_json_as(raw, Dict[str, Dict[str, Any]])
    return {name: entry.get("value") for name, entry in outputs.items()}


def output_value(outputs: Dict[str, Any], output_name: str, output_type: Type[T]) -> T:
    """Typed lookup into a get_outputs() map.

    Raises:
        KeyError: If the output is missing.
        ValueError: If validation to output_type fails.
    """
    if outputs.get(output_name) is None:
        raise KeyError(f"Output '{output_name}' not found in tofu state.")
    return validate_type(outputs[output_name], output_type)
