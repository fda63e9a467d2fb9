"""
Bridge Channels

- whatsapp: session connection to the protocol engine + credential store
- web_server: FastAPI control plane
- mcp: MCP JSON-RPC tools
- outbox: Supabase change-feed trigger for outbound sends
"""
