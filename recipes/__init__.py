"""
Container build recipes and documentation checks.
"""

from recipes.docs import MarkdownProblem, check_markdown, heading_anchors, slugify
from recipes.recipe import (
    DEPLOYED,
    PRESETS,
    BuildRecipe,
    build_recipe,
    check_deployed,
    check_recipe_file,
    locate_artifact,
)

__all__ = [
    "DEPLOYED",
    "PRESETS",
    "BuildRecipe",
    "MarkdownProblem",
    "build_recipe",
    "check_deployed",
    "check_markdown",
    "check_recipe_file",
    "heading_anchors",
    "locate_artifact",
    "slugify",
]
