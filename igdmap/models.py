"""Pydantic models for igdmap.

Provides validated configuration models and the option bundles accepted by
the port-mapping operations.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

DEFAULT_SEARCH_TARGET = "urn:schemas-upnp-org:device:InternetGatewayDevice:1"
DEFAULT_ACCEPTED_SERVICES = (
    "urn:schemas-upnp-org:service:WANIPConnection:1",
    "urn:schemas-upnp-org:service:WANPPPConnection:1",
)
DEFAULT_MAPPING_DESCRIPTION = "igdmap"
DEFAULT_MAPPING_TTL = 30 * 60


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MappingProtocol(str, Enum):
    """Transport protocols a port mapping can forward."""

    TCP = "TCP"
    UDP = "UDP"


class DiscoveryConfig(BaseModel):
    """SSDP discovery configuration."""

    multicast_address: str = Field(
        default="239.255.255.250",
        description="SSDP multicast group address",
    )
    multicast_port: int = Field(
        default=1900,
        ge=1,
        le=65535,
        description="SSDP multicast port",
    )
    search_target: str = Field(
        default=DEFAULT_SEARCH_TARGET,
        description="ST header sent in M-SEARCH queries",
    )
    accepted_services: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ACCEPTED_SERVICES),
        description="Service types a gateway may be controlled through",
    )
    timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Close the discovery session after this many seconds (None to keep it open)",
    )
    interfaces: list[str] | None = Field(
        default=None,
        description="Restrict discovery to these interface names (None for all IPv4 interfaces)",
    )
    multicast_ttl: int = Field(
        default=2,
        ge=1,
        le=255,
        description="IP multicast TTL for M-SEARCH datagrams",
    )
    unique_locations: bool = Field(
        default=False,
        description="Resolve each description URL only once per session",
    )

    @field_validator("accepted_services")
    @classmethod
    def validate_accepted_services(cls, v: list[str]) -> list[str]:
        """Require at least one accepted service type."""
        if not v:
            msg = "accepted_services must not be empty"
            raise ValueError(msg)
        return v


class HttpConfig(BaseModel):
    """HTTP transport configuration."""

    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Total timeout for a single HTTP request in seconds",
    )


class MappingOptions(BaseModel):
    """Options shared by port mapping creation and deletion."""

    internal_host: str | None = Field(
        default=None,
        description="LAN host receiving forwarded traffic (None for the discovery interface address)",
    )
    remote_host: str = Field(
        default="",
        description="Remote host restriction (empty for any host)",
    )
    protocol: MappingProtocol = Field(
        default=MappingProtocol.TCP,
        description="Forwarded protocol",
    )
    description: str = Field(
        default=DEFAULT_MAPPING_DESCRIPTION,
        description="Description stored with the mapping on the gateway",
    )

    @field_validator("protocol", mode="before")
    @classmethod
    def normalize_protocol(cls, v: object) -> object:
        """Accept protocol names in any case."""
        if isinstance(v, str):
            return v.upper()
        return v


class AddMappingOptions(MappingOptions):
    """Options for creating a port mapping."""

    ttl: int = Field(
        default=DEFAULT_MAPPING_TTL,
        ge=0,
        description="Requested lease duration in seconds (0 for permanent)",
    )
    port_scan: bool = Field(
        default=True,
        description="Check that the internal target accepts TCP connections before mapping",
    )
    port_scan_timeout: float = Field(
        default=1.0,
        gt=0.0,
        le=30.0,
        description="Timeout of the reachability check in seconds",
    )


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON records to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        """Accept log level names in any case."""
        if isinstance(v, str):
            return v.upper()
        return v


class Config(BaseModel):
    """Main configuration model."""

    discovery: DiscoveryConfig = Field(
        default_factory=DiscoveryConfig,
        description="Discovery configuration",
    )
    http: HttpConfig = Field(
        default_factory=HttpConfig,
        description="HTTP transport configuration",
    )
    mapping: AddMappingOptions = Field(
        default_factory=AddMappingOptions,
        description="Default port mapping options",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
