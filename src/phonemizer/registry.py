from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional


class Phonemizer:
    """
    Identity of a phonemizer a track can be bound to.
    The phoneme conversion itself belongs to the synthesis engine.
    """

    id = "base"
    language: Optional[str] = None


class DefaultPhonemizer(Phonemizer):
    """Passes lyrics through unchanged."""

    id = "default"


class EnglishSyllablePhonemizer(Phonemizer):
    id = "en-syllable"
    language = "en"


PhonemizerFactory = Callable[[], Phonemizer]


class PhonemizerRegistry:
    """Maps phonemizer identifiers to factories. Lookups are exact-match."""

    def __init__(self) -> None:
        self._factories: Dict[str, PhonemizerFactory] = {}
        self._lock = threading.Lock()

    def register(self, identifier: str, factory: PhonemizerFactory) -> None:
        if not identifier:
            raise ValueError("Phonemizer identifier is required.")
        with self._lock:
            self._factories[identifier] = factory

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._factories

    def resolve(self, identifier: Optional[str]) -> Optional[str]:
        """Return the identifier if registered, else None."""
        if identifier and identifier in self._factories:
            return identifier
        return None

    def identifiers(self) -> List[str]:
        return sorted(self._factories)


def default_registry() -> PhonemizerRegistry:
    """Registry populated with the built-in phonemizers."""
    registry = PhonemizerRegistry()
    registry.register(DefaultPhonemizer.id, DefaultPhonemizer)
    registry.register(EnglishSyllablePhonemizer.id, EnglishSyllablePhonemizer)
    return registry
