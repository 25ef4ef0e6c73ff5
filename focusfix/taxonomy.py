from __future__ import annotations

from typing import Sequence

from .errors import ConfigurationError
from .models import ThemeNode

PATH_SEPARATOR = ">"

DEFAULT_THEMES: tuple[ThemeNode, ...] = (
    ThemeNode(4, "Study", "Reading", "Technical docs"),
    ThemeNode(5, "Study", "Reading", "Books"),
    ThemeNode(6, "Work", "Meeting", "Team meeting"),
    ThemeNode(7, "Work", "Meeting", "Client call"),
    ThemeNode(8, "Work", "Development", "Frontend"),
    ThemeNode(9, "Work", "Development", "Backend"),
    ThemeNode(10, "Entertainment", "Games", "Minecraft"),
    ThemeNode(11, "Entertainment", "Games", "Other games"),
    ThemeNode(12, "Entertainment", "Video", "YouTube"),
    ThemeNode(13, "Entertainment", "Video", "Bilibili"),
    ThemeNode(14, "Life", "Shopping", "Online shopping"),
    ThemeNode(15, "Life", "Social", "WeChat"),
    ThemeNode(16, "Life", "Social", "QQ"),
)


def require_taxonomy(themes: Sequence[ThemeNode]) -> None:
    if not themes:
        raise ConfigurationError("Theme taxonomy is empty; add at least one theme.")


def format_theme_list(themes: Sequence[ThemeNode]) -> str:
    return "\n".join(
        f"{theme.category} > {theme.subcategory} > {theme.specific}" for theme in themes
    )


def split_theme_path(text: str) -> tuple[str, str, str]:
    parts = [part.strip() for part in str(text).split(PATH_SEPARATOR)]
    parts = (parts + ["", "", ""])[:3]
    return parts[0], parts[1], parts[2]


def resolve_theme(text: str | None, themes: Sequence[ThemeNode]) -> ThemeNode:
    """Map a model-provided theme path onto a node of ``themes``.

    Tiers are tried in order and each one only runs when the previous
    found nothing: all three levels, category and subcategory, category
    alone. When nothing matches, the first node is returned.
    """
    require_taxonomy(themes)
    if not text or not str(text).strip():
        return themes[0]

    category, subcategory, specific = (_fold(part) for part in split_theme_path(text))
    tiers = (
        lambda node: (
            _fold(node.category) == category
            and _fold(node.subcategory) == subcategory
            and _fold(node.specific) == specific
        ),
        lambda node: _fold(node.category) == category and _fold(node.subcategory) == subcategory,
        lambda node: _fold(node.category) == category,
    )
    for matches in tiers:
        for node in themes:
            if matches(node):
                return node
    return themes[0]


def parse_theme_path(text: str, next_id: int) -> ThemeNode:
    category, subcategory, specific = split_theme_path(text)
    if not category or not subcategory or not specific:
        raise ValueError("Theme must look like 'Category > Subcategory > Specific'.")
    return ThemeNode(id=next_id, category=category, subcategory=subcategory, specific=specific)


def next_theme_id(themes: Sequence[ThemeNode]) -> int:
    return max((theme.id for theme in themes), default=0) + 1


def _fold(value: str) -> str:
    return " ".join(value.casefold().split())
