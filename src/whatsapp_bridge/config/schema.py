"""
Bridge Configuration Schema

Defines the configuration structure for the WhatsApp bridge.
All configuration can be specified via bridge.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

SEND_MODES = ("awaited", "fire_and_forget")


@dataclass
class ServerConfig:
    """HTTP control plane"""
    host: str = "0.0.0.0"
    port: int = 3000
    # "awaited" or "fire_and_forget" for /send-message when the body has no mode
    send_mode: str = "awaited"
    sse_heartbeat_seconds: float = 30.0


@dataclass
class SessionConfig:
    """WhatsApp session and protocol engine"""
    auth_path: str = "./auth_info_baileys"
    engine_http_url: str = "http://localhost:3001"
    engine_ws_url: str = "ws://localhost:3001/ws"
    default_domain: str = "s.whatsapp.net"
    reconnect_delay_seconds: float = 3.0
    construction_retry_seconds: float = 5.0


@dataclass
class WebhookConfig:
    """Automation endpoint for inbound messages (disabled when url is empty)"""
    url: Optional[str] = None
    token: Optional[str] = None
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass
class SupabaseConfig:
    """Durable store for the inbox sink and the outbox change-feed"""
    url: Optional[str] = None
    key: Optional[str] = None
    inbox_table: str = "inbox_whatsapp"
    outbox_table: str = "outbox_whatsapp"

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.key)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class BridgeConfig:
    """
    Central configuration for the bridge.

    Example bridge.yaml:
    ```yaml
    server:
      port: 3000
      send_mode: awaited

    session:
      auth_path: ./auth_info_baileys
      engine_http_url: "${ENGINE_HTTP_URL:-http://localhost:3001}"

    webhook:
      url: "${N8N_WEBHOOK_URL:-}"
      timeout_seconds: 10

    supabase:
      url: "${SUPABASE_URL:-}"
      key: "${SUPABASE_KEY:-}"

    logging:
      level: info
    ```
    """
    name: str = "whatsapp-bridge"
    version: str = "0.1.0"

    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create BridgeConfig from dictionary (e.g., parsed YAML)"""
        server_data = data.get("server") or {}
        session_data = data.get("session") or {}
        webhook_data = data.get("webhook") or {}
        supabase_data = data.get("supabase") or {}
        logging_data = data.get("logging") or {}

        send_mode = str(server_data.get("send_mode", "awaited")).lower()
        if send_mode not in SEND_MODES:
            raise ValueError(
                f"Invalid send_mode '{send_mode}', expected one of: {', '.join(SEND_MODES)}"
            )

        return cls(
            name=data.get("name", "whatsapp-bridge"),
            version=data.get("version", "0.1.0"),
            server=ServerConfig(
                host=server_data.get("host", "0.0.0.0"),
                port=int(server_data.get("port", 3000)),
                send_mode=send_mode,
                sse_heartbeat_seconds=float(server_data.get("sse_heartbeat_seconds", 30.0)),
            ),
            session=SessionConfig(
                auth_path=session_data.get("auth_path", "./auth_info_baileys"),
                engine_http_url=session_data.get("engine_http_url", "http://localhost:3001"),
                engine_ws_url=session_data.get("engine_ws_url", "ws://localhost:3001/ws"),
                default_domain=session_data.get("default_domain", "s.whatsapp.net"),
                reconnect_delay_seconds=float(session_data.get("reconnect_delay_seconds", 3.0)),
                construction_retry_seconds=float(session_data.get("construction_retry_seconds", 5.0)),
            ),
            webhook=WebhookConfig(
                url=webhook_data.get("url") or None,
                token=webhook_data.get("token") or None,
                timeout_seconds=float(webhook_data.get("timeout_seconds", 10.0)),
            ),
            supabase=SupabaseConfig(
                url=supabase_data.get("url") or None,
                key=supabase_data.get("key") or None,
                inbox_table=supabase_data.get("inbox_table", "inbox_whatsapp"),
                outbox_table=supabase_data.get("outbox_table", "outbox_whatsapp"),
            ),
            logging=LoggingConfig(
                level=str(logging_data.get("level", "INFO")).upper(),
                file=logging_data.get("file") or None,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (secrets masked)"""
        return {
            "name": self.name,
            "version": self.version,
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "send_mode": self.server.send_mode,
                "sse_heartbeat_seconds": self.server.sse_heartbeat_seconds,
            },
            "session": {
                "auth_path": self.session.auth_path,
                "engine_http_url": self.session.engine_http_url,
                "engine_ws_url": self.session.engine_ws_url,
                "default_domain": self.session.default_domain,
                "reconnect_delay_seconds": self.session.reconnect_delay_seconds,
                "construction_retry_seconds": self.session.construction_retry_seconds,
            },
            "webhook": {
                "url": self.webhook.url,
                "token": "***" if self.webhook.token else None,
                "timeout_seconds": self.webhook.timeout_seconds,
            },
            "supabase": {
                "url": self.supabase.url,
                "key": "***" if self.supabase.key else None,
                "inbox_table": self.supabase.inbox_table,
                "outbox_table": self.supabase.outbox_table,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
        }
