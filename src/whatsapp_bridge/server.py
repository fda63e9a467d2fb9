"""
Bridge Host Server

Wires the session core to its collaborators and serves the control plane:

    FileCredentialStore ─┐
                         ├─> SessionManager ──messages──> InboundFanout ──> WebhookForwarder
    engine connection  ──┘        │                                    └──> SupabaseInboxSink
                                  └──on connected──> OutboxSubscriber ──> OutboundDispatcher
    BridgeWebServer (/health /status /qr /send-message /mcp) ──> OutboundDispatcher, SessionState

Optional pieces (webhook, Supabase) are enabled by configuration presence.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Optional

from .channels.mcp import MCPServer
from .channels.outbox import OutboxSubscriber
from .channels.web_server import BridgeWebServer
from .channels.whatsapp.client import create_bridge_connection
from .channels.whatsapp.credentials import FileCredentialStore
from .config import BridgeConfig, load_config
from .core.dispatcher import DeliveryMode, OutboundDispatcher
from .core.fanout import InboundFanout
from .core.session import SessionManager
from .core.state import SessionState
from .sinks.supabase import SupabaseInboxSink, get_supabase_client
from .sinks.webhook import WebhookForwarder

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    """All long-lived components of one bridge process."""
    config: BridgeConfig
    state: SessionState
    manager: SessionManager
    dispatcher: OutboundDispatcher
    fanout: InboundFanout
    web: BridgeWebServer
    webhook: Optional[WebhookForwarder] = None
    outbox: Optional[OutboxSubscriber] = None


async def build_bridge(config: BridgeConfig) -> Bridge:
    """Create and connect every component described by ``config``."""
    state = SessionState()
    dispatcher = OutboundDispatcher(state, default_domain=config.session.default_domain)
    fanout = InboundFanout(state)

    webhook = None
    if config.webhook.enabled:
        webhook = WebhookForwarder(
            config.webhook.url,
            token=config.webhook.token,
            timeout=config.webhook.timeout_seconds,
        )
        fanout.add_consumer(webhook)
    else:
        logger.warning("N8N_WEBHOOK_URL not set, inbound messages will not be forwarded")

    outbox = None
    if config.supabase.enabled:
        client = await get_supabase_client(config.supabase.url, config.supabase.key)
        fanout.add_consumer(SupabaseInboxSink(client, table=config.supabase.inbox_table))
        outbox = OutboxSubscriber(client, dispatcher, table=config.supabase.outbox_table)
    else:
        logger.warning("SUPABASE_KEY not set, inbox persistence and outbox are disabled")

    manager = SessionManager(
        state,
        FileCredentialStore(config.session.auth_path),
        partial(
            create_bridge_connection,
            http_url=config.session.engine_http_url,
            ws_url=config.session.engine_ws_url,
        ),
        on_messages=fanout.handle_batch,
        reconnect_delay=config.session.reconnect_delay_seconds,
        construction_retry_delay=config.session.construction_retry_seconds,
    )
    if outbox is not None:
        manager.on_connected(outbox.subscribe)

    @asynccontextmanager
    async def lifespan(app):
        await manager.start()
        try:
            yield
        finally:
            logger.info("Shutting down bridge...")
            await manager.stop()
            if outbox is not None:
                await outbox.unsubscribe()

    web = BridgeWebServer(
        state,
        dispatcher,
        MCPServer(state, dispatcher, server_name=config.name, server_version=config.version),
        webhook=webhook,
        default_send_mode=DeliveryMode(config.server.send_mode),
        heartbeat_interval=config.server.sse_heartbeat_seconds,
        host=config.server.host,
        port=config.server.port,
        lifespan=lifespan,
        version=config.version,
    )

    return Bridge(
        config=config,
        state=state,
        manager=manager,
        dispatcher=dispatcher,
        fanout=fanout,
        web=web,
        webhook=webhook,
        outbox=outbox,
    )


async def run_bridge(config: Optional[BridgeConfig] = None, debug: bool = False):
    """Run the bridge until the process is stopped."""
    if config is None:
        config = load_config()

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if config.logging.file:
        file_handler = logging.FileHandler(config.logging.file)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        logging.getLogger().addHandler(file_handler)

    bridge = await build_bridge(config)

    print("=" * 60)
    print(f"  {config.name} v{config.version}")
    print("=" * 60)
    print(f"   Control plane: http://{config.server.host}:{config.server.port}")
    print(f"   ├── Pairing:   /qr")
    print(f"   ├── Send:      /send-message ({config.server.send_mode})")
    print(f"   ├── MCP:       /mcp, /mcp/sse")
    print(f"   └── Health:    /health, /status")
    print(f"   Engine:        {config.session.engine_http_url}")
    print(f"   Webhook:       {config.webhook.url or 'disabled'}")
    print(f"   Supabase:      {'enabled' if config.supabase.enabled else 'disabled'}")
    print("=" * 60)

    await bridge.web.start()
