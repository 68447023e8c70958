"""libp2p transport for RLN-protected messages."""
