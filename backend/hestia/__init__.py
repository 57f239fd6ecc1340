"""Hestia Policy Engine - rental guarantee approval backend."""
