"""Protocol definitions for the engine's external collaborators.

The engine never talks to a transport or a database directly. Callers plug
in fetchers, committers, merge resolvers and an optional persistence hook
that satisfy the interfaces below.
"""

from __future__ import annotations

from .services import Committer, Fetcher, MergeResolver, PersistenceHook

__all__ = ["Committer", "Fetcher", "MergeResolver", "PersistenceHook"]
