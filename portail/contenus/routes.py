from flask import Blueprint, abort, jsonify
from flask_login import current_user, login_required

from portail.http import expect, json_body
from portail.rbac import require_perm
from portail.stores import current_store

from . import services

bp = Blueprint("contenus", __name__, url_prefix="/contenus")

# Segment d'URL -> collection
COLLECTIONS = {
    "evenements": "events",
    "publications": "content_items",
    "forum": "forum_posts",
    "notifications": "notifications",
}

BUILDERS = {
    "events": services.new_event,
    "content_items": services.new_content_item,
    "forum_posts": services.new_forum_post,
    "notifications": services.new_notification,
}

LIKEABLE = ("content_items", "forum_posts")


def _collection(slug: str) -> str:
    collection = COLLECTIONS.get(slug)
    if collection is None:
        abort(404, description=f"Rubrique inconnue : {slug}")
    return collection


def _public_view(collection: str, items: list[dict]) -> list[dict]:
    if collection == "events":
        return services.published_events(items)
    if collection == "notifications":
        return services.active_notifications(items)
    return sorted(items, key=lambda i: i.get("created_at") or "", reverse=True)


# ----------------------------------------------------------------------
# Site public
# ----------------------------------------------------------------------
@bp.route("/<slug>")
def public_list(slug):
    collection = _collection(slug)
    items = expect(current_store().list_items(collection))
    return jsonify({"items": _public_view(collection, items)})


@bp.route("/<slug>/<item_id>")
def public_detail(slug, item_id):
    collection = _collection(slug)
    store = current_store()
    item = expect(store.get_item(collection, item_id))
    if collection == "events" and item.get("status") != "published":
        abort(404, description="Événement introuvable")
    if collection in LIKEABLE:
        item = expect(store.update_item(collection, item_id, services.view(item)))
    return jsonify({"item": item})


@bp.route("/<slug>/<item_id>/like", methods=["POST"])
def like(slug, item_id):
    collection = _collection(slug)
    if collection not in LIKEABLE:
        abort(404)
    store = current_store()
    item = expect(store.get_item(collection, item_id))
    item = expect(store.update_item(collection, item_id, services.like(item)))
    return jsonify({"likes": item.get("likes", 0)})


@bp.route("/publications/<item_id>/commentaires", methods=["POST"])
def comment(item_id):
    data = json_body()
    store = current_store()
    item = expect(store.get_item("content_items", item_id))
    item = expect(store.update_item("content_items", item_id, services.add_comment(item, data.get("author"), data.get("content"))))
    return jsonify({"item": item}), 201


@bp.route("/forum", methods=["POST"])
def new_post():
    post = services.new_forum_post(json_body())
    created = expect(current_store().create_item("forum_posts", post))
    return jsonify({"item": created}), 201


@bp.route("/forum/<post_id>/reponses", methods=["POST"])
def reply(post_id):
    data = json_body()
    store = current_store()
    post = expect(store.get_item("forum_posts", post_id))
    post = expect(store.update_item("forum_posts", post_id, services.add_reply(post, data.get("author"), data.get("content"))))
    return jsonify({"item": post}), 201


# ----------------------------------------------------------------------
# Administration
# ----------------------------------------------------------------------
@bp.route("/admin/<slug>", methods=["GET"])
@login_required
@require_perm("contenus:view")
def admin_list(slug):
    collection = _collection(slug)
    items = expect(current_store().list_items(collection))
    return jsonify({"items": items})


@bp.route("/admin/<slug>", methods=["POST"])
@login_required
@require_perm("contenus:edit")
def admin_create(slug):
    collection = _collection(slug)
    item = BUILDERS[collection](json_body(), current_user.nom or current_user.email)
    created = expect(current_store().create_item(collection, item))
    return jsonify({"item": created}), 201


@bp.route("/admin/<slug>/<item_id>", methods=["PUT", "PATCH"])
@login_required
@require_perm("contenus:edit")
def admin_update(slug, item_id):
    collection = _collection(slug)
    updates = {k: v for k, v in json_body().items() if k not in ("id", "_id", "created_at", "updated_at")}
    item = expect(current_store().update_item(collection, item_id, updates))
    return jsonify({"item": item})


@bp.route("/admin/<slug>/<item_id>", methods=["DELETE"])
@login_required
@require_perm("contenus:delete")
def admin_delete(slug, item_id):
    collection = _collection(slug)
    expect(current_store().delete_item(collection, item_id))
    return jsonify({"ok": True})


@bp.route("/admin/forum/<post_id>/reponses/<reply_id>/solution", methods=["POST"])
@login_required
@require_perm("contenus:edit")
def mark_answer(post_id, reply_id):
    store = current_store()
    post = expect(store.get_item("forum_posts", post_id))
    post = expect(store.update_item("forum_posts", post_id, services.mark_answer(post, reply_id)))
    return jsonify({"item": post})
