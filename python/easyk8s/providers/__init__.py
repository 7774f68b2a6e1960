"""
easyk8s.providers

Provider registry:
- ProviderName: every backend identity, implemented or not.
- provider_map: ProviderName -> Provider class.
- get_provider: factory keyed on the backend identity string.
"""

from enum import Enum
from typing import Any, Dict, Type, Union

from easyk8s.errors import PreconditionError
from easyk8s.providers.aws import AWSProvider
from easyk8s.providers.base import Provider, TofuProvider
from easyk8s.providers.hetzner import HetznerProvider
from easyk8s.providers.proxmox import ProxmoxProvider
from easyk8s.providers.vsphere import VSphereProvider


class ProviderName(str, Enum):
    aws = "aws"
    hetzner = "hetzner"
    proxmox = "proxmox"
    vsphere = "vsphere"


provider_map: Dict[ProviderName, Type[Provider]] = {
    ProviderName.aws: AWSProvider,
    ProviderName.hetzner: HetznerProvider,
    ProviderName.proxmox: ProxmoxProvider,
    ProviderName.vsphere: VSphereProvider,
}


def get_provider(name: Union[str, ProviderName], *args: Any, **kwargs: Any) -> Provider:
    """Instantiate the provider registered for `name`.

    Extra arguments (settings, runner, environ, which, sleep) are passed to
    the provider's constructor.

    Raises:
        PreconditionError: If `name` is not a known backend.
    """
    try:
        key = ProviderName(name)
    except ValueError as exc:
        valid = ", ".join(p.value for p in ProviderName)
        raise PreconditionError(
            f"unsupported provider type {name!r} (valid: {valid})"
        ) from exc
    return provider_map[key](*args, **kwargs)


__all__ = [
    "ProviderName",
    "provider_map",
    "get_provider",
    "Provider",
    "TofuProvider",
    "AWSProvider",
    "HetznerProvider",
    "ProxmoxProvider",
    "VSphereProvider",
]
