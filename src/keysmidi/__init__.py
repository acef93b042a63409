"""keysmidi – piano-roll editing core (tracks, notes, history, SMF export)."""
from __future__ import annotations

__version__ = "0.3.0"
