"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import NFSBridgeModalCLI, main

__all__ = ['NFSBridgeModalCLI', 'main']
