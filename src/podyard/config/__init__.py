"""Configuration helpers for podyard."""

from .recipes import Recipe, RecipeLoader, merge_dicts
from .settings import InstallConfig, parse_bool, parse_int

__all__ = [
    "InstallConfig",
    "Recipe",
    "RecipeLoader",
    "merge_dicts",
    "parse_bool",
    "parse_int",
]
