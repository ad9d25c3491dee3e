"""Pydantic models for sprout.yaml.

These models validate the configuration document and carry the state the
pipeline derives from it (resolved images, rewritten compose content).
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sprout.types import ResolvedImage

DEFAULT_OUTPUT_PATH = "build/image.img"
DEFAULT_USERNAME = "sprout"


class NetworkConfig(BaseModel):
    """Credentials for one wireless network."""

    model_config = ConfigDict(extra="ignore")

    psk: str = Field(default="", description="WPA pre-shared key")


class WirelessConfig(BaseModel):
    """Wireless networking section."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    networks: dict[str, NetworkConfig] = Field(default_factory=dict)

    @field_validator("networks", mode="before")
    @classmethod
    def none_as_empty(cls, v: object) -> object:
        return {} if v is None else v


class OutputConfig(BaseModel):
    """Where the finished image is written."""

    model_config = ConfigDict(extra="ignore")

    path: str = DEFAULT_OUTPUT_PATH


class DockerComposeConfig(BaseModel):
    """Compose section plus the state derived from the compose file.

    Attributes:
        enabled: Embed the compose project into the image.
        path: Compose file path, relative to sprout.yaml unless absolute.
        content: Raw compose text as read from disk.
        rewritten_content: Compose text using local tags. Only set once
            every image has been resolved and embedded.
        images: Images resolved from the compose services.
    """

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    path: str = ""
    content: str = Field(default="", exclude=True)
    rewritten_content: str = Field(default="", exclude=True)
    images: list[ResolvedImage] = Field(default_factory=list, exclude=True)


class SproutConfig(BaseModel):
    """Complete sprout.yaml model."""

    model_config = ConfigDict(extra="ignore")

    ssh_keys: list[str] = Field(default_factory=list)
    username: str = DEFAULT_USERNAME
    wireless: WirelessConfig = Field(default_factory=WirelessConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    docker_compose: DockerComposeConfig = Field(default_factory=DockerComposeConfig)
    autodiscovery: bool = False
    agent_binary_path: Path | None = Field(default=None, exclude=True)

    @field_validator("ssh_keys", mode="before")
    @classmethod
    def none_as_empty_list(cls, v: object) -> object:
        return [] if v is None else v

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Usernames end up as Nix attribute names."""
        if not v or not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError(f"username must be alphanumeric (with - or _), got '{v}'")
        return v

    @property
    def embeds_compose(self) -> bool:
        return self.docker_compose.enabled and bool(self.docker_compose.path)


__all__ = [
    "DEFAULT_OUTPUT_PATH",
    "DEFAULT_USERNAME",
    "DockerComposeConfig",
    "NetworkConfig",
    "OutputConfig",
    "SproutConfig",
    "WirelessConfig",
]
