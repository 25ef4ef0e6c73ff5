from __future__ import annotations

import unittest

from focusfix.errors import ConfigurationError
from focusfix.models import ThemeNode
from focusfix.taxonomy import (
    DEFAULT_THEMES,
    format_theme_list,
    next_theme_id,
    parse_theme_path,
    resolve_theme,
    split_theme_path,
)

THEMES = [
    ThemeNode(1, "Study", "Reading", "Books"),
    ThemeNode(2, "Work", "Development", "Frontend"),
    ThemeNode(3, "Work", "Development", "Backend"),
    ThemeNode(4, "Work", "Meeting", "Team meeting"),
]


class ResolveThemeTests(unittest.TestCase):
    def test_exact_match_wins(self) -> None:
        self.assertEqual(resolve_theme("Work > Development > Backend", THEMES).id, 3)

    def test_match_ignores_case_and_spacing(self) -> None:
        self.assertEqual(resolve_theme("  work >development>   BACKEND ", THEMES).id, 3)

    def test_falls_back_to_category_and_subcategory(self) -> None:
        self.assertEqual(resolve_theme("Work > Meeting > Standup", THEMES).id, 4)

    def test_falls_back_to_category(self) -> None:
        self.assertEqual(resolve_theme("Work > Email > Inbox", THEMES).id, 2)

    def test_unknown_theme_resolves_to_first_node(self) -> None:
        self.assertEqual(resolve_theme("Gaming > Console > Zelda", THEMES).id, 1)
        self.assertEqual(resolve_theme(None, THEMES).id, 1)
        self.assertEqual(resolve_theme("", THEMES).id, 1)

    def test_category_only_taxonomy(self) -> None:
        themes = [ThemeNode(1, "Work"), ThemeNode(2, "Leisure")]
        self.assertEqual(resolve_theme("Leisure", themes).id, 2)

    def test_empty_taxonomy_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            resolve_theme("Work", [])


class ThemePathTests(unittest.TestCase):
    def test_split_pads_missing_levels(self) -> None:
        self.assertEqual(split_theme_path("Work > Dev"), ("Work", "Dev", ""))

    def test_parse_requires_all_levels(self) -> None:
        node = parse_theme_path("Life > Social > Chat", next_id=20)
        self.assertEqual(node, ThemeNode(20, "Life", "Social", "Chat"))
        with self.assertRaises(ValueError):
            parse_theme_path("Life > Social", next_id=21)

    def test_next_theme_id(self) -> None:
        self.assertEqual(next_theme_id(THEMES), 5)
        self.assertEqual(next_theme_id([]), 1)

    def test_format_lists_every_default_theme(self) -> None:
        lines = format_theme_list(DEFAULT_THEMES).splitlines()
        self.assertEqual(len(lines), len(DEFAULT_THEMES))
        self.assertIn("Work > Development > Backend", lines)


if __name__ == "__main__":
    unittest.main()
