"""Scripted stand-ins for audio devices and providers."""
