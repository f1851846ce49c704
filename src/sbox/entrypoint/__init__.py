"""Host/sandbox handoff: the host prepares ``.sbox/``, the sandbox consumes it."""
