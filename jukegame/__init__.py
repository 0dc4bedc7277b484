"""jukegame - round pipeline and cache maintenance for the shared-jukebox artist game

Modular architecture: game stages, maintenance queues, catalog client and store.
"""

__version__ = "1.0.0"
__author__ = "jukegame Contributors"

# Lazy imports to avoid double execution when running with 'python -m jukegame.main'
__all__ = ["main", "services"]
