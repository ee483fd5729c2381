# library_portal.py - user-facing library blueprint (/library)
from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from datastore import current_store
from errors import LibraryError, RecordNotFound
from extensions import db
from models import User
from moderation import submit_suggestion
from resource_pipeline import FilterState, load_snapshot, resolve
from scope_resolver import list_browsable_subspecialties

library_bp = Blueprint("library_portal", __name__)

FILTERS_KEY = "library_filters"


@library_bp.errorhandler(LibraryError)
def _library_error(e: LibraryError):
    current_app.logger.warning("[LIBRARY] %s: %s", type(e).__name__, e.message)
    return jsonify({"error": e.message}), e.status_code


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


def _gate():
    return current_app.extensions.get("scope_gate")


# =========================
#   AUTH (minimal)
# =========================
@library_bp.route("/login", methods=["POST"])
def login():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = User.query.filter(db.func.lower(User.email) == email).first() if email else None
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        current_app.logger.info("[LIBRARY] failed login for %s", email or "<empty>")
        return jsonify({"error": "Invalid email or password."}), 401
    login_user(user, remember=True)
    session.pop(FILTERS_KEY, None)
    return jsonify({"id": user.id, "email": user.email, "role": user.role})


@library_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    gate = _gate()
    if gate is not None:
        gate.forget(current_user.id)
    session.pop(FILTERS_KEY, None)
    logout_user()
    return jsonify({"ok": True})


# =========================
#   BROWSE
# =========================
def _requested_updates(previous: FilterState, browsable_ids) -> tuple[dict, list]:
    updates, messages = {}, []
    args = request.args

    if "subspecialty_id" in args:
        override = args.get("subspecialty_id", type=int)
        if override is not None and override not in browsable_ids:
            messages.append("Subspecialty not available. Please select a different one.")
        else:
            updates["browse_subspecialty_id"] = override
    if "category_id" in args:
        updates["category_id"] = args.get("category_id", type=int)
    if "q" in args:
        updates["search"] = (args.get("q") or "").strip()
    if "favorites" in args:
        updates["favorites_only"] = (args.get("favorites") or "").strip().lower() in ("1", "true", "yes", "on")
    if "page" in args:
        updates["page"] = max(1, args.get("page", default=previous.page, type=int) or 1)
    return updates, messages


@library_bp.route("/", methods=["GET"])
@login_required
def browse():
    store = current_store()
    profile = current_user.to_profile()
    previous = FilterState.from_mapping(session.get(FILTERS_KEY))

    browsable_ids = {s.id for s in list_browsable_subspecialties(store, profile)}
    updates, messages = _requested_updates(previous, browsable_ids)
    state = previous.changed(**updates)

    snapshot = load_snapshot(store, profile, state.browse_subspecialty_id, gate=_gate())
    if snapshot.superseded:
        # a newer browse request from this viewer owns the session state
        current_app.logger.info("[LIBRARY] user=%s browse superseded, discarded", profile.id)
        return jsonify({"error": "A newer library request replaced this one.", "superseded": True}), 409

    page_size = current_app.config.get("LIBRARY_PAGE_SIZE") or 10
    view = resolve(state, snapshot, page_size=page_size, previous=previous)
    if view.message:
        messages.append(view.message)

    session[FILTERS_KEY] = view.state.to_dict()
    if snapshot.scope.degraded:
        current_app.logger.warning(
            "[LIBRARY] user=%s browsing degraded scope: %s", profile.id, snapshot.scope.reason
        )

    body = view.to_dict(snapshot.favorite_ids)
    body["message"] = " ".join(messages) or None
    return jsonify(body)


@library_bp.route("/subspecialties", methods=["GET"])
@login_required
def subspecialties():
    subs = list_browsable_subspecialties(current_store(), current_user.to_profile())
    return jsonify([{"id": s.id, "name": s.name, "specialty_id": s.specialty_id} for s in subs])


# =========================
#   FAVORITES / SUGGESTIONS
# =========================
@library_bp.route("/favorites/<int:resource_id>", methods=["POST"])
@login_required
def toggle_favorite(resource_id: int):
    store = current_store()
    if store.get_resource(resource_id) is None:
        raise RecordNotFound(f"Resource {resource_id} not found.")
    is_favorite = store.toggle_favorite(current_user.id, resource_id)
    return jsonify({"resource_id": resource_id, "is_favorite": is_favorite})


@library_bp.route("/suggestions", methods=["POST"])
@login_required
def suggest_resource():
    suggestion = submit_suggestion(current_store(), current_user.to_profile(), _payload())
    current_app.logger.info("[LIBRARY] suggestion %s submitted by user=%s", suggestion.id, current_user.id)
    return jsonify(suggestion.to_dict()), 201
