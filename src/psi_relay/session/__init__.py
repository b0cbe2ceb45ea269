"""psi-relay session package: ephemeral key material and correlation tokens."""

from psi_relay.session.keys import EntropyProvider, KeyManager, SystemEntropy

__all__ = ["EntropyProvider", "KeyManager", "SystemEntropy"]
