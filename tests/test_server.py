"""
Test Bridge Wiring and Entry Point
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from whatsapp_bridge import __main__ as entry
from whatsapp_bridge.config import BridgeConfig
from whatsapp_bridge.core.dispatcher import DeliveryMode
from whatsapp_bridge.server import build_bridge
from whatsapp_bridge.sinks.supabase import SupabaseInboxSink


class TestBuildBridge:

    @pytest.mark.asyncio
    async def test_minimal_configuration(self):
        bridge = await build_bridge(BridgeConfig.from_dict({}))

        assert bridge.webhook is None
        assert bridge.outbox is None
        assert bridge.fanout.consumers == []
        assert bridge.manager.on_messages == bridge.fanout.handle_batch
        assert bridge.web.default_send_mode == DeliveryMode.AWAITED

    @pytest.mark.asyncio
    async def test_webhook_enabled(self):
        config = BridgeConfig.from_dict({
            "server": {"send_mode": "fire_and_forget"},
            "webhook": {"url": "https://n8n.example.com/webhook/wa", "token": "hf_secret", "timeout_seconds": 5},
        })

        bridge = await build_bridge(config)

        assert bridge.fanout.consumers == [bridge.webhook]
        assert bridge.webhook.token == "hf_secret"
        assert bridge.webhook.timeout == 5.0
        assert bridge.web.webhook is bridge.webhook
        assert bridge.web.default_send_mode == DeliveryMode.FIRE_AND_FORGET

    @pytest.mark.asyncio
    async def test_supabase_enabled(self):
        config = BridgeConfig.from_dict({"supabase": {"url": "https://x.supabase.co", "key": "service-role"}})
        client = MagicMock()

        with patch("whatsapp_bridge.server.get_supabase_client", AsyncMock(return_value=client)) as get_client:
            bridge = await build_bridge(config)

        get_client.assert_awaited_once_with("https://x.supabase.co", "service-role")
        assert isinstance(bridge.fanout.consumers[0], SupabaseInboxSink)
        assert bridge.outbox.client is client
        assert bridge.manager._connected_callbacks == [bridge.outbox.subscribe]


class TestEntryPoint:

    def test_port_flag_overrides_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("PORT", raising=False)
        run_bridge = AsyncMock()
        monkeypatch.setattr(entry, "run_bridge", run_bridge)

        entry.main(["--port", "8080"])

        config = run_bridge.await_args.args[0]
        assert config.server.port == 8080
        assert run_bridge.await_args.kwargs == {"debug": False}

    def test_missing_config_file_exits(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        with pytest.raises(SystemExit) as exc_info:
            entry.main(["--config", str(tmp_path / "missing.yaml")])

        assert exc_info.value.code == 1

    def test_invalid_send_mode_exits(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SEND_MODE", "eventually")
        run_bridge = AsyncMock()
        monkeypatch.setattr(entry, "run_bridge", run_bridge)

        with pytest.raises(SystemExit) as exc_info:
            entry.main([])

        assert exc_info.value.code == 1
        run_bridge.assert_not_called()
