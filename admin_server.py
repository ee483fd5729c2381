# admin_server.py - admin blueprint: suggestion moderation + resource and category management (/admin)
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

from datastore import current_store
from errors import LibraryError, ModerationForbidden, StoreError, SuggestionTransitionConflict
import category_admin
import moderation
import resource_admin

admin_bp = Blueprint('admin', __name__)


@admin_bp.errorhandler(LibraryError)
def _admin_error(e: LibraryError):
    current_app.logger.warning('[ADMIN] %s for user=%s: %s',
                               type(e).__name__, getattr(current_user, 'id', None), e.message)
    body = {'success': False, 'error': e.message}
    if isinstance(e, SuggestionTransitionConflict):
        # the pending list moved under the admin: hand back a fresh one
        try:
            body['pending'] = moderation.list_pending(current_store(), current_user.to_profile()).to_dict()
        except StoreError as store_error:
            current_app.logger.warning('[ADMIN] pending list not reloaded after conflict: %s', store_error.message)
    return jsonify(body), e.status_code


def _require_admin():
    profile = current_user.to_profile()
    if not profile.role.is_admin:
        raise ModerationForbidden('Admin access required.')
    return profile


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


# ===== Suggestions ==========================================================
@admin_bp.route('/suggestions', methods=['GET'], endpoint='pending_suggestions')
@login_required
def pending_suggestions():
    profile = _require_admin()
    view = moderation.list_pending(current_store(), profile)
    return jsonify(view.to_dict())


@admin_bp.route('/suggestions/<int:suggestion_id>/approve', methods=['POST'], endpoint='approve_suggestion')
@login_required
def approve_suggestion(suggestion_id):
    profile = _require_admin()
    resource = moderation.approve(current_store(), profile, suggestion_id)
    current_app.logger.info('[ADMIN][MODERATION] suggestion %s approved by %s', suggestion_id, profile.id)
    return jsonify({'success': True, 'resource': resource.to_dict()})


@admin_bp.route('/suggestions/<int:suggestion_id>/reject', methods=['POST'], endpoint='reject_suggestion')
@login_required
def reject_suggestion(suggestion_id):
    profile = _require_admin()
    suggestion = moderation.reject(current_store(), profile, suggestion_id)
    current_app.logger.info('[ADMIN][MODERATION] suggestion %s rejected by %s', suggestion_id, profile.id)
    return jsonify({'success': True, 'suggestion': suggestion.to_dict()})


@admin_bp.route('/suggestions/<int:suggestion_id>', methods=['POST'], endpoint='edit_suggestion')
@login_required
def edit_suggestion(suggestion_id):
    profile = _require_admin()
    suggestion = moderation.update_suggestion(current_store(), profile, suggestion_id, _payload())
    return jsonify({'success': True, 'suggestion': suggestion.to_dict()})


# ===== Resources ============================================================
@admin_bp.route('/resources', methods=['POST'], endpoint='create_resource')
@login_required
def create_resource():
    profile = _require_admin()
    resource = resource_admin.create_resource(current_store(), profile, _payload())
    return jsonify({'success': True, 'resource': resource.to_dict()}), 201


@admin_bp.route('/resources/<int:resource_id>', methods=['POST'], endpoint='update_resource')
@login_required
def update_resource(resource_id):
    profile = _require_admin()
    resource = resource_admin.update_resource(current_store(), profile, resource_id, _payload())
    return jsonify({'success': True, 'resource': resource.to_dict()})


@admin_bp.route('/resources/<int:resource_id>/delete', methods=['POST'], endpoint='delete_resource')
@login_required
def delete_resource(resource_id):
    profile = _require_admin()
    resource_admin.delete_resource(current_store(), profile, resource_id)
    return jsonify({'success': True, 'message': 'Resource deleted'})


# ===== Categories ===========================================================
@admin_bp.route('/categories', methods=['GET'], endpoint='list_categories')
@login_required
def list_categories():
    profile = _require_admin()
    subspecialty_id = request.args.get('subspecialty_id', type=int)
    tree = category_admin.list_managed_categories(current_store(), profile, subspecialty_id)
    return jsonify({'success': True, 'categories': tree.to_list()})


@admin_bp.route('/categories', methods=['POST'], endpoint='create_category')
@login_required
def create_category():
    profile = _require_admin()
    category = category_admin.create_category(current_store(), profile, _payload())
    return jsonify({'success': True, 'category': _category_json(category)}), 201


@admin_bp.route('/categories/<int:category_id>', methods=['POST'], endpoint='rename_category')
@login_required
def rename_category(category_id):
    profile = _require_admin()
    category = category_admin.rename_category(current_store(), profile, category_id, _payload())
    return jsonify({'success': True, 'category': _category_json(category)})


@admin_bp.route('/categories/<int:category_id>/delete', methods=['POST'], endpoint='delete_category')
@login_required
def delete_category(category_id):
    profile = _require_admin()
    deleted = category_admin.delete_category(current_store(), profile, category_id)
    current_app.logger.info('[ADMIN][CATEGORY] %s deleted by %s', list(deleted), profile.id)
    return jsonify({'success': True, 'deleted_ids': list(deleted)})


@admin_bp.route('/categories/reorder', methods=['POST'], endpoint='reorder_categories')
@login_required
def reorder_categories():
    profile = _require_admin()
    data = request.get_json(silent=True) or {}
    ids = data.get('ids') if data else request.form.getlist('ids')
    categories = category_admin.reorder_categories(current_store(), profile, ids)
    return jsonify({'success': True, 'categories': [_category_json(c) for c in categories]})


def _category_json(category):
    return {
        'id': category.id,
        'name': category.name,
        'order': category.order,
        'depth': category.depth,
        'subspecialty_id': category.subspecialty_id,
        'parent_category_id': category.parent_category_id,
    }
