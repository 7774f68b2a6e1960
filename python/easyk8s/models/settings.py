# easyk8s/models/settings.py

import os

from pydantic import Field
from pydantic_settings import BaseSettings

from easyk8s.models.remote import PollPolicy


class EasyK8sSettings(BaseSettings):
    """
    Pydantic settings for the orchestrator. They are passed explicitly into
    providers, channels and the sequencer; nothing reads them globally.
    By default, these fields map to environment variables prefixed with `EASYK8S_`.
    For example, `EASYK8S_STATE_ROOT`, `EASYK8S_TOFU_BINARY`, etc.
    """

    state_root: str = Field(
        default_factory=lambda: os.path.expanduser("~/.easyk8s/clusters")
    )
    modules_dir: str = "./providers"
    tofu_binary: str = "tofu"
    api_port: int = 6443
    poll_interval_seconds: float = 5.0
    poll_timeout_seconds: float = 300.0
    remote_ready_delay_seconds: float = 30.0  # before the first SSM command
    ssh_user: str = "root"
    ssh_connect_timeout: int = 10
    command_retries: int = 1

    class Config:
        env_prefix = "EASYK8S_"

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(
            interval=self.poll_interval_seconds, timeout=self.poll_timeout_seconds
        )

    def cluster_dir(self, name: str) -> str:
        return os.path.join(os.path.expanduser(self.state_root), name)

    def terraform_dir(self, name: str) -> str:
        return os.path.join(self.cluster_dir(name), "terraform")
