"""
Streaming agent chat over a persistent WebSocket connection.

Modules:
- personas: closed AgentRegistry of personas (instruction + temperature)
- completion: CompletionAdapter turning a persona + user text into stream events
- session: per-connection SessionDispatcher state machine
- server: FastAPI app with the agent socket and liveness endpoint
- client: StreamClient with bounded reconnection and transcript reassembly
- protocol / events / states / errors / config / llm: shared pieces
"""
