import atexit
import logging
import math
import os
from itertools import zip_longest
from typing import List, Optional, Tuple, Union

from .errors import (
    AuthError,
    NotFoundError,
    RecipeBoxError,
    RepositoryError,
    ValidationError,
    user_message,
)
from .gcp_storage import FirestoreDocumentStore
from .identity import FirebaseIdentityProvider
from .models import Identity, Ingredient, Recipe, RecipeDraft, Session
from .repository import RecipeRepository
from .session import SessionStore
from .storage import DocumentStore, IdentityProvider

# Imported after the relative imports: loading the .session submodule binds
# `session` on this package, which would otherwise shadow flask.session.
from flask import Flask, flash, redirect, render_template, request, session, url_for

logger = logging.getLogger(__name__)

SIGNUP_PROFILE_FAILED = "Your account was created, but saving your profile failed. Please try again later."
LIST_FAILED = "Failed to load recipes. Please try again later."
DETAIL_FAILED = "Failed to load the recipe. Please try again later."
CREATE_FAILED = "Failed to add recipe. Please try again."
SESSION_EXPIRED = "Your session has expired. Please log in again."


def create_app(
    store: Optional[DocumentStore] = None,
    identity: Optional[IdentityProvider] = None,
) -> Flask:
    """Create and configure the Flask application.

    Parameters
    ----------
    store:
        Optional document store. When ``None`` the application will use
        :class:`FirestoreDocumentStore` configured through environment variables.
    identity:
        Optional identity provider. When ``None`` the application will use
        :class:`FirebaseIdentityProvider` configured through environment variables
        and close it when the process exits.
    """

    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "development-secret-change-me")

    if store is None:
        store = FirestoreDocumentStore.from_env()
    if identity is None:
        identity = FirebaseIdentityProvider.from_env()
        atexit.register(identity.close)

    session_store = SessionStore(
        identity,
        store,
        users_collection=os.environ.get("USERS_COLLECTION", "users"),
    )
    session_store.start()
    atexit.register(session_store.close)

    app.config["SESSION_STORE"] = session_store
    app.config["RECIPE_REPOSITORY"] = RecipeRepository(
        store, collection=os.environ.get("RECIPES_COLLECTION", "recipes")
    )

    def _request_session() -> Session:
        """The shared session as seen by this browser.

        Only the browser that logged in carries the matching ``uid`` cookie;
        every other visitor is anonymous.
        """

        current = session_store.current
        if current.authenticated and session.get("uid") != current.identity.uid:
            return Session.anonymous()
        return current

    @app.context_processor
    def inject_auth_session() -> dict:
        return {"auth_session": _request_session()}

    @app.get("/")
    def index():
        return redirect(url_for("list_recipes"))

    @app.route("/signup", methods=["GET", "POST"])
    def signup():
        if _request_session().authenticated:
            return redirect(url_for("list_recipes"))
        if request.method == "GET":
            return render_template("signup.html", title="Sign up")

        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        password_confirm = request.form.get("password_confirm", "")

        if password != password_confirm:
            flash("Passwords do not match", "error")
            return redirect(url_for("signup"))

        try:
            account = session_store.sign_up(email, password)
        except RepositoryError as exc:
            # The account is signed in even though its profile was not saved.
            current = session_store.current
            if current.authenticated:
                session["uid"] = current.identity.uid
            flash(user_message(exc, fallback=SIGNUP_PROFILE_FAILED), "error")
            return redirect(url_for("signup"))
        except Exception as exc:
            _log_unexpected(exc)
            flash(user_message(exc), "error")
            return redirect(url_for("signup"))

        session["uid"] = account.uid
        return redirect(url_for("list_recipes"))

    @app.route("/login", methods=["GET", "POST"])
    def login():
        if _request_session().authenticated:
            return redirect(url_for("list_recipes"))
        if request.method == "GET":
            return render_template("login.html", title="Log in")

        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")

        try:
            account = session_store.sign_in(email, password)
        except Exception as exc:
            _log_unexpected(exc)
            flash(user_message(exc), "error")
            return redirect(url_for("login"))

        session["uid"] = account.uid
        return redirect(url_for("list_recipes"))

    @app.post("/logout")
    def logout():
        if _request_session().authenticated:
            try:
                session_store.sign_out()
            except Exception as exc:
                _log_unexpected(exc)
                flash(user_message(exc), "error")
                return redirect(url_for("list_recipes"))
        session.pop("uid", None)
        return redirect(url_for("login"))

    @app.get("/recipes")
    def list_recipes():
        repository: RecipeRepository = app.config["RECIPE_REPOSITORY"]
        recipes: List[Recipe] = []
        error = None

        try:
            recipes = repository.list_all()
        except Exception as exc:
            _log_unexpected(exc)
            error = user_message(exc, fallback=LIST_FAILED)

        return render_template("recipes.html", recipes=recipes, error=error, title="Our Recipes")

    @app.get("/recipes/new")
    def new_recipe():
        _, gate = _require_login()
        if gate is not None:
            return gate
        return render_template("add_recipe.html", draft=None, title="Add New Recipe")

    @app.post("/recipes")
    def create_recipe():
        account, gate = _require_login()
        if gate is not None:
            return gate

        repository: RecipeRepository = app.config["RECIPE_REPOSITORY"]
        draft = draft_from_form(request.form, user_id=account.uid)

        try:
            repository.create(draft)
        except ValidationError as exc:
            flash(exc.message, "error")
            return render_template("add_recipe.html", draft=draft, title="Add New Recipe"), 400
        except Exception as exc:
            _log_unexpected(exc)
            flash(user_message(exc, fallback=CREATE_FAILED), "error")
            return render_template("add_recipe.html", draft=draft, title="Add New Recipe"), 502

        flash("Recipe added successfully!", "success")
        return redirect(url_for("list_recipes"))

    @app.get("/recipes/<recipe_id>")
    def recipe_detail(recipe_id: str):
        repository: RecipeRepository = app.config["RECIPE_REPOSITORY"]

        try:
            recipe = repository.get_by_id(recipe_id)
        except NotFoundError:
            return render_template("not_found.html", title="Recipe not found"), 404
        except Exception as exc:
            _log_unexpected(exc)
            flash(user_message(exc, fallback=DETAIL_FAILED), "error")
            return redirect(url_for("list_recipes"))

        return render_template(
            "recipe_detail.html",
            recipe=recipe,
            is_owner=recipe.is_owned_by(_request_session().identity),
            title=recipe.name,
        )

    def _require_login() -> Tuple[Optional[Identity], Optional[object]]:
        """Return this browser's identity, or the response to send instead."""

        current = _request_session()
        if not current.resolved:
            return None, (render_template("loading.html", title="Loading"), 503)

        if current.authenticated:
            try:
                session_store.revalidate()
            except AuthError as exc:
                if _request_session().authenticated:
                    flash(user_message(exc), "error")
                    return None, redirect(url_for("list_recipes"))
                session.pop("uid", None)
                flash(SESSION_EXPIRED, "error")
                return None, redirect(url_for("login"))
            current = _request_session()

        if not current.authenticated:
            flash("Please log in to add a recipe.", "error")
            return None, redirect(url_for("login"))
        return current.identity, None

    return app


def draft_from_form(form, *, user_id: str) -> RecipeDraft:
    """Build a :class:`RecipeDraft` from the submitted recipe form."""

    rows = zip_longest(
        form.getlist("ingredient_name"),
        form.getlist("ingredient_quantity"),
        form.getlist("ingredient_unit"),
        fillvalue="",
    )
    ingredients = [
        Ingredient(name=name, quantity=parse_number(quantity) or 0, unit=unit)
        for name, quantity, unit in rows
    ]

    return RecipeDraft(
        name=form.get("name", ""),
        ingredients=ingredients,
        instructions=form.getlist("instruction"),
        cooking_time=parse_number(form.get("cooking_time", "")),
        servings=parse_number(form.get("servings", "")),
        user_id=user_id,
        image_url=form.get("image_url", ""),
        categories=parse_categories(form.get("categories", "")),
    )


def parse_number(value: str) -> Optional[Union[int, float]]:
    text = (value or "").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def parse_categories(value: str) -> List[str]:
    return [category.strip() for category in (value or "").split(",") if category.strip()]


def _log_unexpected(exc: Exception) -> None:
    if not isinstance(exc, RecipeBoxError):
        logger.exception("Unexpected error while handling %s", request.path)


__all__ = ["create_app", "Recipe"]
