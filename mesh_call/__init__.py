"""Mesh video calling: signaling server, room registry and per-peer negotiation."""
