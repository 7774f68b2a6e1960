# easyk8s/models/ssh.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SSHConfig(BaseModel):
    """
    How to reach one cluster node over SSH with a tofu-generated key.
    Without host_keys the connection skips host key checking.
    """

    model_config = ConfigDict(frozen=True)

    user: str = "root"
    hostname: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    private_key: str
    host_keys: Optional[List[str]] = None
    connect_timeout: int = Field(default=10, ge=1)

    @field_validator("private_key")
    @classmethod
    def _key_has_content(cls, val: str) -> str:
        if not val.strip():
            raise ValueError("private_key is empty")
        # ssh refuses key files that do not end in a newline
        return val if val.endswith("\n") else val + "\n"
