"""storage/__init__.py"""
from .state_store import PersistedState, StateLoadError, StateStore

__all__ = ["PersistedState", "StateLoadError", "StateStore"]
