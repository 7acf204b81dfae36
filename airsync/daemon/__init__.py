"""Receiver daemon: HTTP service, mDNS advertisement and lifecycle."""
