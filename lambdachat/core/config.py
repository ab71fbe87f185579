"""
Configuration management for the Lambda Chat relay and client.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from aiortc import RTCConfiguration, RTCIceServer

from lambdachat.core.exceptions import ConfigError


DEFAULT_STUN_URL = "stun:stun.l.google.com:19302"


@dataclass
class RelayConfig:
    """Relay (signaling server) settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_file: Optional[str] = "lambdachat_relay.log"

    def __post_init__(self):
        """Apply environment overrides."""
        self.host = os.environ.get('LAMBDACHAT_HOST', self.host)
        self.port = int(os.environ.get('LAMBDACHAT_PORT', self.port))
        self.log_level = os.environ.get('LAMBDACHAT_LOG_LEVEL', self.log_level)

    def __str__(self) -> str:
        return f"RelayConfig(host={self.host}, port={self.port})"


@dataclass
class ClientConfig:
    """Chat client settings.

    ``username``, ``sig_srv``, ``msg_box_id`` and ``input_id`` are required.
    ``msg_box_id`` and ``input_id`` name the front end's output and input
    widgets and are carried through untouched.
    """

    username: str = ""
    sig_srv: str = ""
    msg_box_id: str = ""
    input_id: str = ""
    logging_callback: Optional[Callable[[str, str], Any]] = None

    # ICE configuration
    stun_url: str = DEFAULT_STUN_URL
    turn_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_password: Optional[str] = None

    # Negotiation behaviour
    handshake_timeout: Optional[float] = 30.0
    initiate_on_existing_peers: bool = False

    rtc_config: Optional[RTCConfiguration] = field(default=None, repr=False)

    def __post_init__(self):
        missing = [
            name for name in ('username', 'sig_srv', 'msg_box_id', 'input_id')
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError("Missing required configuration parameters", {"missing": missing})

        self.stun_url = os.environ.get('LAMBDACHAT_STUN_URL', self.stun_url)
        self.turn_url = os.environ.get('LAMBDACHAT_TURN_URL', self.turn_url)
        self.turn_username = os.environ.get('LAMBDACHAT_TURN_USERNAME', self.turn_username)
        self.turn_password = os.environ.get('LAMBDACHAT_TURN_PASSWORD', self.turn_password)

        timeout = os.environ.get('LAMBDACHAT_HANDSHAKE_TIMEOUT')
        if timeout is not None:
            self.handshake_timeout = float(timeout)
        if not self.handshake_timeout:
            self.handshake_timeout = None

        if self.rtc_config is None:
            self._build_rtc_config()

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], **overrides) -> "ClientConfig":
        """Build from the front-end style keys (sigSrv, msgBoxId, ...)."""
        return cls(
            username=config.get('username', ''),
            sig_srv=config.get('sigSrv', ''),
            msg_box_id=config.get('msgBoxId', ''),
            input_id=config.get('inputId', ''),
            logging_callback=config.get('loggingCallback'),
            **overrides
        )

    def _build_rtc_config(self):
        """Build the aiortc configuration from the ICE settings."""
        ice_servers = [RTCIceServer(urls=self.stun_url)]

        if self.turn_url:
            ice_servers.append(
                RTCIceServer(
                    urls=self.turn_url,
                    username=self.turn_username,
                    credential=self.turn_password
                )
            )

        self.rtc_config = RTCConfiguration(ice_servers)

    def __str__(self) -> str:
        return f"ClientConfig(username={self.username}, sig_srv={self.sig_srv})"
