from .registry import (
    DefaultPhonemizer,
    EnglishSyllablePhonemizer,
    Phonemizer,
    PhonemizerRegistry,
    default_registry,
)

__all__ = [
    "DefaultPhonemizer",
    "EnglishSyllablePhonemizer",
    "Phonemizer",
    "PhonemizerRegistry",
    "default_registry",
]
