from __future__ import annotations

import logging

from .proto import Signal, build_frame
from .rooms import ConnectionRegistry

log = logging.getLogger("pairchat.relay")


class SignalingRelay:
    """Fire-and-forget forwarding of offer / answer / ice-candidate payloads.

    The payload is re-emitted verbatim under its own event kind to the single
    connection owning the target address. An unknown target or a dead
    connection is a silent miss.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def relay(self, signal: Signal) -> bool:
        target = self.registry.lookup(signal.target)
        if target is None:
            log.debug("No peer at %s for %s", signal.target, signal.kind)
            return False
        try:
            await target.send(build_frame(signal.kind, signal.payload))
        except ConnectionError:
            log.debug("Peer %s closed before %s could be relayed", signal.target, signal.kind)
            return False
        log.debug("Relayed %s to %s", signal.kind, signal.target)
        return True
