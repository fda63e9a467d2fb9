"""
MCP Channel

Minimal MCP (Model Context Protocol) server over HTTP JSON-RPC 2.0, so a
remote tool-calling client can drive the bridge:

- send_whatsapp_message {number, message} -> OutboundDispatcher (awaited)
- get_whatsapp_status {}                  -> SessionState

Supported methods: initialize, tools/list, tools/call, ping. Notifications
(no id, or ``notifications/*``) get no response.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.dispatcher import DeliveryMode, OutboundDispatcher
from ..core.errors import BridgeError
from ..core.state import SessionState

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


# =============================================================================
# MCP PROTOCOL TYPES
# =============================================================================

@dataclass
class MCPToolDefinition:
    """MCP Tool definition for capability exposure."""
    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema
        }


@dataclass
class MCPToolResult:
    """MCP tool call result."""
    content: List[Dict[str, Any]]
    is_error: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "MCPToolResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    @classmethod
    def from_data(cls, data: Dict[str, Any], is_error: bool = False) -> "MCPToolResult":
        return cls.text(json.dumps(data), is_error=is_error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "isError": self.is_error
        }


TOOLS = [
    MCPToolDefinition(
        name="send_whatsapp_message",
        description="Send a WhatsApp text message to a phone number or JID",
        input_schema={
            "type": "object",
            "properties": {
                "number": {
                    "type": "string",
                    "description": "Destination phone number (digits, country code first) or full JID"
                },
                "message": {
                    "type": "string",
                    "description": "Message text"
                }
            },
            "required": ["number", "message"]
        }
    ),
    MCPToolDefinition(
        name="get_whatsapp_status",
        description="Get the WhatsApp connection status of the bridge",
        input_schema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
]


class MCPError(Exception):
    """JSON-RPC level error"""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# =============================================================================
# MCP SERVER
# =============================================================================

class MCPServer:
    """JSON-RPC request handler exposing the bridge as MCP tools."""

    def __init__(
        self,
        state: SessionState,
        dispatcher: OutboundDispatcher,
        server_name: str = "whatsapp-bridge",
        server_version: str = "0.1.0",
    ):
        self.state = state
        self.dispatcher = dispatcher
        self.server_name = server_name
        self.server_version = server_version
        self._tools: Dict[str, MCPToolDefinition] = {t.name: t for t in TOOLS}

    @property
    def tools(self) -> List[MCPToolDefinition]:
        return list(self._tools.values())

    async def handle_request(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one JSON-RPC message.

        Returns the response envelope, or None for notifications.
        """
        if (
            not isinstance(message, dict)
            or message.get("jsonrpc") != "2.0"
            or not isinstance(message.get("method"), str)
        ):
            msg_id = message.get("id") if isinstance(message, dict) else None
            return self._error(msg_id, INVALID_REQUEST, "Invalid Request")

        method = message["method"]
        params = message.get("params") or {}
        msg_id = message.get("id")
        is_notification = "id" not in message or method.startswith("notifications/")

        if not isinstance(params, dict):
            if is_notification:
                return None
            return self._error(msg_id, INVALID_PARAMS, "Invalid params: expected an object")

        try:
            result = await self._dispatch(method, params)
        except MCPError as e:
            if is_notification:
                return None
            return self._error(msg_id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Error handling MCP {method}: {e}")
            if is_notification:
                return None
            return self._error(msg_id, INTERNAL_ERROR, f"Internal error: {e}")

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    async def _dispatch(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": {
                    "name": self.server_name,
                    "version": self.server_version
                },
                "capabilities": {
                    "tools": {}
                }
            }

        elif method == "tools/list":
            return {"tools": [t.to_dict() for t in self.tools]}

        elif method == "tools/call":
            tool_name = params.get("name")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise MCPError(INVALID_PARAMS, "Invalid params: arguments must be an object")
            result = await self.call_tool(tool_name, arguments)
            return result.to_dict()

        elif method == "ping":
            return {}

        elif method.startswith("notifications/"):
            logger.debug(f"MCP notification: {method}")
            return {}

        raise MCPError(METHOD_NOT_FOUND, f"Method not found: {method}")

    # =========================================================================
    # TOOLS
    # =========================================================================

    async def call_tool(self, name: Optional[str], arguments: Dict[str, Any]) -> MCPToolResult:
        if name == "send_whatsapp_message":
            return await self._send_message(arguments)
        elif name == "get_whatsapp_status":
            return self._get_status()

        return MCPToolResult.text(f"Unknown tool: {name}", is_error=True)

    async def _send_message(self, arguments: Dict[str, Any]) -> MCPToolResult:
        number = arguments.get("number")
        message = arguments.get("message")
        if not number or not message:
            return MCPToolResult.text("Error: 'number' and 'message' are required", is_error=True)

        try:
            result = await self.dispatcher.send(str(number), str(message), mode=DeliveryMode.AWAITED)
        except BridgeError as e:
            return MCPToolResult.text(f"Error: {e.message}", is_error=True)

        return MCPToolResult.from_data({
            "success": True,
            "messageId": result.message_id,
            "to": result.jid,
        })

    def _get_status(self) -> MCPToolResult:
        snapshot = self.state.current
        return MCPToolResult.from_data({
            "connected": snapshot.is_connected,
            "user": snapshot.user_id if snapshot.is_connected else None,
            "hasQR": snapshot.has_qr,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @staticmethod
    def _error(msg_id: Any, code: int, message: str) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "error": {"code": code, "message": message}
        }
