"""WebSocket chat: transport endpoint, session coordinator and fan-out gateway."""
