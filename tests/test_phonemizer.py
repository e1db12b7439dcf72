"""
Tests for the phonemizer registry.
"""

from __future__ import annotations

import unittest

from src.phonemizer import (
    DefaultPhonemizer,
    PhonemizerRegistry,
    default_registry,
)


class PhonemizerRegistryTests(unittest.TestCase):
    def test_default_registry_contents(self) -> None:
        registry = default_registry()
        self.assertEqual(registry.identifiers(), ["default", "en-syllable"])
        self.assertIn("en-syllable", registry)
        self.assertNotIn("ja-kana", registry)

    def test_lookup_is_exact_match(self) -> None:
        registry = default_registry()
        self.assertEqual(registry.resolve("en-syllable"), "en-syllable")
        self.assertIsNone(registry.resolve("EN-SYLLABLE"))
        self.assertIsNone(registry.resolve(" en-syllable"))
        self.assertIsNone(registry.resolve(""))
        self.assertIsNone(registry.resolve(None))

    def test_register_requires_identifier(self) -> None:
        registry = PhonemizerRegistry()
        with self.assertRaises(ValueError):
            registry.register("", DefaultPhonemizer)

    def test_register_replaces_existing_factory(self) -> None:
        registry = PhonemizerRegistry()
        registry.register("default", DefaultPhonemizer)
        registry.register("default", DefaultPhonemizer)
        self.assertEqual(registry.identifiers(), ["default"])


if __name__ == "__main__":
    unittest.main()
