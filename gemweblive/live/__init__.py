"""Live API session: setup handshake, config assembly and transport."""
