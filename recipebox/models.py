from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

Number = Union[int, float]

DEFAULT_RECIPE_NAME = "Untitled Recipe"
UNKNOWN_USER_ID = "unknown"


@dataclass(frozen=True)
class Ingredient:
    """A single ingredient line of a recipe."""

    name: str
    quantity: Number
    unit: str

    def to_dict(self) -> dict:
        return {"name": self.name, "quantity": self.quantity, "unit": self.unit}


@dataclass
class Recipe:
    """Domain object representing a stored recipe."""

    id: str
    name: str = DEFAULT_RECIPE_NAME
    ingredients: List[Ingredient] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)
    cooking_time: Number = 0
    servings: Number = 0
    user_id: str = UNKNOWN_USER_ID
    image_url: str = ""
    categories: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_document(self) -> dict:
        """Return the stored-document form of this recipe, without its id."""

        doc = {
            "name": self.name,
            "ingredients": [ingredient.to_dict() for ingredient in self.ingredients],
            "instructions": list(self.instructions),
            "cookingTime": self.cooking_time,
            "servings": self.servings,
            "userId": self.user_id,
            "imageUrl": self.image_url,
            "categories": list(self.categories),
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc

    def is_owned_by(self, identity: Optional["Identity"]) -> bool:
        return identity is not None and identity.uid == self.user_id


@dataclass
class RecipeDraft:
    """Recipe data entered by a user before it has been stored."""

    name: str
    ingredients: List[Ingredient]
    instructions: List[str]
    cooking_time: Optional[Number]
    servings: Optional[Number]
    user_id: str
    image_url: str = ""
    categories: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Identity:
    """Handle for a user authenticated by the identity provider."""

    uid: str
    email: str
    id_token: str = field(default="", repr=False)
    refresh_token: str = field(default="", repr=False)


class SessionState(enum.Enum):
    UNRESOLVED = "unresolved"
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Session:
    state: SessionState
    identity: Optional[Identity] = None

    @classmethod
    def unresolved(cls) -> "Session":
        return cls(SessionState.UNRESOLVED)

    @classmethod
    def anonymous(cls) -> "Session":
        return cls(SessionState.ANONYMOUS)

    @classmethod
    def authenticated_as(cls, identity: Identity) -> "Session":
        return cls(SessionState.AUTHENTICATED, identity)

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def resolved(self) -> bool:
        return self.state is not SessionState.UNRESOLVED


__all__ = [
    "DEFAULT_RECIPE_NAME",
    "Identity",
    "Ingredient",
    "Number",
    "Recipe",
    "RecipeDraft",
    "Session",
    "SessionState",
    "UNKNOWN_USER_ID",
]
