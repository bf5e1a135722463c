from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Iterable

from portail.formulaires.schema import now_iso

CONTENT_TYPES = ("image", "video", "article", "communique", "annonce", "actualite")
EVENT_TYPES = ("event", "conference", "forum", "class")
EVENT_STATUSES = ("draft", "published", "cancelled")
NOTIFICATION_TYPES = ("news", "event", "conference", "forum", "class")
PRIORITIES = ("low", "medium", "high")


class ContentError(ValueError):
    pass


def _required(data: dict, *keys: str) -> None:
    missing = [k for k in keys if not str(data.get(k) or "").strip()]
    if missing:
        raise ContentError(f"Champs obligatoires manquants : {', '.join(missing)}")


def _choice(value: Any, allowed: tuple[str, ...], default: str, what: str) -> str:
    value = (value or default)
    if value not in allowed:
        raise ContentError(f"{what} inconnu : {value}")
    return value


def _optional_count(value: Any, what: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ContentError(f"{what} invalide : {value}") from None
    if count < 0:
        raise ContentError(f"{what} invalide : {value}")
    return count


def _today() -> str:
    return date.today().isoformat()


def new_content_item(data: dict, author: str | None = None) -> dict:
    _required(data, "title")
    return {
        "type": _choice(data.get("type"), CONTENT_TYPES, "article", "Type de contenu"),
        "title": data["title"].strip(),
        "description": (data.get("description") or "").strip(),
        "url": (data.get("url") or "").strip(),
        "thumbnail": data.get("thumbnail") or None,
        "author": author or data.get("author") or "Administration",
        "date": data.get("date") or _today(),
        "likes": 0,
        "views": 0,
        "comments": [],
    }


def new_event(data: dict, created_by: str | None = None) -> dict:
    _required(data, "title", "date")
    return {
        "type": _choice(data.get("type"), EVENT_TYPES, "event", "Type d'événement"),
        "title": data["title"].strip(),
        "description": (data.get("description") or "").strip(),
        "date": data["date"],
        "time": data.get("time") or "",
        "location": data.get("location") or "",
        "instructor": data.get("instructor") or None,
        "participants": 0,
        "max_participants": _optional_count(data.get("max_participants"), "Nombre maximum de participants"),
        "status": _choice(data.get("status"), EVENT_STATUSES, "draft", "Statut"),
        "created_by": created_by,
    }


def new_forum_post(data: dict, author: str | None = None) -> dict:
    _required(data, "title", "content")
    return {
        "title": data["title"].strip(),
        "content": data["content"].strip(),
        "author": author or (data.get("author") or "Anonyme").strip(),
        "date": _today(),
        "category": (data.get("category") or "Général").strip(),
        "replies": [],
        "likes": 0,
        "views": 0,
        "is_answered": False,
    }


def new_notification(data: dict, created_by: str | None = None) -> dict:
    _required(data, "title", "message")
    return {
        "type": _choice(data.get("type"), NOTIFICATION_TYPES, "news", "Type de notification"),
        "title": data["title"].strip(),
        "message": data["message"].strip(),
        "priority": _choice(data.get("priority"), PRIORITIES, "medium", "Priorité"),
        "is_active": bool(data.get("is_active", True)),
        "created_by": created_by,
    }


def _entry(author: str | None, content: str) -> dict:
    content = (content or "").strip()
    if not content:
        raise ContentError("Le message est vide")
    return {
        "id": uuid.uuid4().hex,
        "author": (author or "Anonyme").strip(),
        "content": content,
        "date": now_iso(),
    }


def add_comment(item: dict, author: str | None, content: str) -> dict:
    """Retourne les modifications à appliquer (liste de commentaires complétée)."""
    comments = list(item.get("comments") or [])
    comments.append(_entry(author, content))
    return {"comments": comments}


def add_reply(post: dict, author: str | None, content: str) -> dict:
    replies = list(post.get("replies") or [])
    reply = _entry(author, content)
    reply["likes"] = 0
    reply["is_answer"] = False
    replies.append(reply)
    return {"replies": replies}


def mark_answer(post: dict, reply_id: str) -> dict:
    replies = [dict(r) for r in (post.get("replies") or [])]
    found = False
    for r in replies:
        r["is_answer"] = r.get("id") == reply_id
        found = found or r["is_answer"]
    if not found:
        raise ContentError(f"Réponse introuvable : {reply_id}")
    return {"replies": replies, "is_answered": True}


def like(item: dict) -> dict:
    return {"likes": int(item.get("likes") or 0) + 1}


def view(item: dict) -> dict:
    return {"views": int(item.get("views") or 0) + 1}


def active_notifications(items: Iterable[dict]) -> list[dict]:
    """Notifications actives, priorité haute d'abord puis plus récentes."""
    rank = {p: i for i, p in enumerate(reversed(PRIORITIES))}
    active = [n for n in items if n.get("is_active")]
    active.sort(key=lambda n: n.get("created_at") or "", reverse=True)
    active.sort(key=lambda n: rank.get(n.get("priority"), len(PRIORITIES)))
    return active


def published_events(items: Iterable[dict]) -> list[dict]:
    events = [e for e in items if e.get("status") == "published"]
    return sorted(events, key=lambda e: (e.get("date") or "", e.get("time") or ""))
