from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import List

from .errors import NotFoundError, RepositoryError, StoreError, ValidationError
from .mapper import recipe_from_document
from .models import Recipe, RecipeDraft
from .storage import Document, DocumentStore

logger = logging.getLogger(__name__)


class RecipeRepository:
    """Reads and writes recipes in the document store."""

    def __init__(self, store: DocumentStore, *, collection: str = "recipes") -> None:
        self._store = store
        self._collection = collection

    def list_all(self) -> List[Recipe]:
        """Return every stored recipe, in whatever order the store yields them."""

        try:
            documents = self._store.scan_collection(self._collection)
        except StoreError as exc:
            logger.error("Listing recipes failed: %s", exc)
            raise RepositoryError("list", str(exc)) from exc
        return [recipe_from_document(doc_id, data) for doc_id, data in documents]

    def get_by_id(self, recipe_id: str) -> Recipe:
        if not recipe_id:
            raise NotFoundError(recipe_id)

        try:
            data = self._store.get_document(self._collection, recipe_id)
        except StoreError as exc:
            logger.error("Fetching recipe %s failed: %s", recipe_id, exc)
            raise RepositoryError("get", str(exc)) from exc

        if data is None:
            raise NotFoundError(recipe_id)
        return recipe_from_document(recipe_id, data)

    def create(self, draft: RecipeDraft) -> str:
        """Validate ``draft``, store it and return the id assigned by the store.

        Raises :class:`ValidationError` before anything is sent to the store
        when a required field is missing or invalid.
        """

        validate_draft(draft)
        document = draft_to_document(draft, created_at=datetime.now(timezone.utc))

        try:
            recipe_id = self._store.insert_document(self._collection, document)
        except StoreError as exc:
            logger.error("Saving recipe '%s' failed: %s", document["name"], exc)
            raise RepositoryError("create", str(exc)) from exc

        logger.info("Recipe '%s' stored as %s", document["name"], recipe_id)
        return recipe_id


def validate_draft(draft: RecipeDraft) -> None:
    if not draft.name or not draft.name.strip():
        raise ValidationError("name", "Please provide a recipe name.")

    for ingredient in draft.ingredients:
        if (
            not ingredient.name.strip()
            or not ingredient.unit.strip()
            or not _is_number(ingredient.quantity)
            or ingredient.quantity <= 0
        ):
            raise ValidationError(
                "ingredients",
                "Every ingredient needs a name, a unit and a quantity greater than zero.",
            )

    for step in draft.instructions:
        if not step or not step.strip():
            raise ValidationError("instructions", "Instruction steps cannot be empty.")

    if not _is_number(draft.cooking_time) or draft.cooking_time < 0:
        raise ValidationError("cookingTime", "Please provide the cooking time in minutes.")

    if not _is_number(draft.servings) or draft.servings < 0:
        raise ValidationError("servings", "Please provide the number of servings.")


def draft_to_document(draft: RecipeDraft, *, created_at: datetime) -> Document:
    document: Document = {
        "name": draft.name.strip(),
        "ingredients": [
            {
                "name": ingredient.name.strip(),
                "quantity": ingredient.quantity,
                "unit": ingredient.unit.strip(),
            }
            for ingredient in draft.ingredients
        ],
        "instructions": [step.strip() for step in draft.instructions],
        "cookingTime": draft.cooking_time,
        "servings": draft.servings,
        "userId": draft.user_id,
        "createdAt": created_at,
    }

    image_url = (draft.image_url or "").strip()
    if image_url:
        document["imageUrl"] = image_url

    categories = [category.strip() for category in draft.categories if category and category.strip()]
    if categories:
        document["categories"] = categories

    return document


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


__all__ = ["RecipeRepository", "draft_to_document", "validate_draft"]
