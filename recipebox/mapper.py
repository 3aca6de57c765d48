from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any, List

from .models import (
    DEFAULT_RECIPE_NAME,
    UNKNOWN_USER_ID,
    Ingredient,
    Number,
    Recipe,
)


def recipe_from_document(doc_id: str, data: Any) -> Recipe:
    """Build a :class:`Recipe` from a raw stored document.

    Missing or malformed fields fall back to their defaults; this function
    never raises for any ``data`` value.
    """

    if not isinstance(data, Mapping):
        data = {}

    created_at = data.get("createdAt")
    if not isinstance(created_at, datetime):
        created_at = None

    return Recipe(
        id=str(doc_id),
        name=_text(data.get("name")) or DEFAULT_RECIPE_NAME,
        ingredients=_ingredients(data.get("ingredients")),
        instructions=_strings(data.get("instructions")),
        cooking_time=_number(data.get("cookingTime")),
        servings=_number(data.get("servings")),
        user_id=_text(data.get("userId")) or UNKNOWN_USER_ID,
        image_url=_text(data.get("imageUrl")),
        categories=_strings(data.get("categories")),
        created_at=created_at,
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _number(value: Any) -> Number:
    # bool is an int subclass but never a valid quantity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if value < 0:
        return 0
    return value


def _strings(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [_text(item) for item in value if item is not None]


def _ingredients(value: Any) -> List[Ingredient]:
    if not isinstance(value, (list, tuple)):
        return []
    return [_ingredient(item) for item in value if isinstance(item, Mapping)]


def _ingredient(item: Mapping) -> Ingredient:
    return Ingredient(
        name=_text(item.get("name")),
        quantity=_number(item.get("quantity")),
        unit=_text(item.get("unit")),
    )


__all__ = ["recipe_from_document"]
