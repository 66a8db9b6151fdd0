"""Helpers shared by the relay server and the console."""
