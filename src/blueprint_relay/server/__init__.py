"""Relay server: accept loop, connection bridge and upstream link."""
