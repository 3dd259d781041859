"""
Message board nodes.

A request arrives as one raw node ("request"): a dict with method, path,
params and the logged-on user (or None). Everything else is derived.
Pages are returned as plain dicts; turning them into HTML belongs to
whatever renders the response.

    kiln fire message_board.nodes response \
        --input '{"request": {"method": "GET", "path": "/list-messages", "user": "alice"}}'
"""

from __future__ import annotations

import re
from typing import Any

from kiln.errors import ComputationFailed
from kiln.graph.glaze import GlazeCall, glaze, log_glaze
from kiln.graph.registry import NodeRegistry, default_registry

from message_board.store import Message, MessageStore, StoreSession

BASE_URI = "http://localhost:8080"

_MESSAGE_PATH = re.compile(r"^/(?:show|edit)-message/(\d+)$")


class AccessDenied(Exception):
    """Raised by glazes guarding pages; the renderer turns it into an error page."""

    pass


class NotFound(Exception):
    pass


def _message_dict(message: Message) -> dict[str, Any]:
    return {
        "key": message.key,
        "owner": message.owner,
        "header": message.header,
        "content": message.content,
    }


def _commit_and_close(session: StoreSession) -> None:
    session.commit()
    session.close()


def _rollback_and_close(session: StoreSession) -> None:
    session.rollback()
    session.close()


@glaze()
def require_logged_on(call: GlazeCall) -> Any:
    """Deny access unless a user is logged on."""
    if call.lookup("current-user-name") is None:
        raise AccessDenied("Not logged on")
    return call.proceed()


@glaze()
def require_my_message(call: GlazeCall) -> Any:
    """Deny access unless the current user owns the addressed message."""
    if not call.lookup("my-message?"):
        raise AccessDenied("Wrong User")
    return call.proceed()


def register(registry: NodeRegistry, store: MessageStore) -> NodeRegistry:
    """Declare the message board graph in ``registry``, backed by ``store``."""
    request = registry.coal("request", description="Inbound request dict")

    @registry.clay(deps=[request], transaction_allowed=True)
    def params(lookup):
        return lookup(request).get("params", {})

    @registry.clay(deps=[request], transaction_allowed=True)
    def current_user_name(lookup):
        return lookup(request).get("user")

    @registry.clay(name="uri-with-path", transaction_allowed=True)
    def uri_with_path(lookup, path):
        return f"{BASE_URI}{path}"

    @registry.clay(
        deps=[request],
        cleanup_success=_commit_and_close,
        cleanup_failure=_rollback_and_close,
    )
    def db(lookup) -> StoreSession:
        return store.begin()

    @registry.clay(deps=[request], transaction_allowed=True)
    def message_id(lookup):
        match = _MESSAGE_PATH.match(lookup(request).get("path", ""))
        if match is None:
            raise NotFound("No message id in path")
        return int(match.group(1))

    @registry.clay(deps=[db, message_id])
    def message(lookup):
        found = lookup(db).get_message(lookup(message_id))
        if found is None:
            raise NotFound(f"No message {lookup(message_id)}")
        return found

    @registry.clay(name="my-message?", deps=[message, current_user_name])
    def my_message(lookup):
        return lookup(message).owner == lookup(current_user_name)

    @registry.clay(deps=[db, uri_with_path], glazes=[log_glaze, require_logged_on])
    def list_messages_body(lookup):
        rows = [
            {**_message_dict(m), "link": lookup(uri_with_path, f"/show-message/{m.key}")}
            for m in lookup(db).list_messages()
        ]
        return {
            "messages": rows,
            "empty": not rows,
            "new_link": lookup(uri_with_path, "/new-message"),
        }

    @registry.clay(deps=[message, my_message, uri_with_path], glazes=[require_logged_on])
    def show_message_body(lookup):
        page = _message_dict(lookup(message))
        if lookup(my_message):
            page["edit_link"] = lookup(uri_with_path, f"/edit-message/{page['key']}")
        return page

    @registry.clay(deps=[uri_with_path], glazes=[require_logged_on])
    def new_message_body(lookup):
        return {"form": ["header", "body"], "action": lookup(uri_with_path, "/new-message")}

    @registry.clay(deps=[message], glazes=[require_logged_on, require_my_message])
    def edit_message_body(lookup):
        current = lookup(message)
        return {"form": {"header": current.header, "body": current.content}}

    @registry.clay(
        name="new-message-action!",
        deps=[params, current_user_name, db],
        glazes=[require_logged_on],
    )
    def new_message_action(lookup):
        form = lookup(params)
        return lookup(db).put_message(lookup(current_user_name), form["header"], form["body"])

    @registry.clay(
        name="edit-message-action!",
        deps=[params, message_id, db],
        glazes=[require_logged_on, require_my_message],
    )
    def edit_message_action(lookup):
        form = lookup(params)
        return lookup(db).edit_message(lookup(message_id), form["header"], form["body"])

    @registry.clay(deps=[uri_with_path])
    def new_message_redirect_uri(lookup):
        return lookup(uri_with_path, "/list-messages")

    @registry.clay(deps=[message_id, uri_with_path])
    def edit_message_redirect_uri(lookup):
        return lookup(uri_with_path, f"/show-message/{lookup(message_id)}")

    @registry.clay(deps=[request])
    def main_dispatch(lookup):
        """Map (method, path) to the nodes answering it."""
        req = lookup(request)
        method, path = req.get("method", "GET").upper(), req.get("path", "/")
        if path in ("/", "/list-messages"):
            return {"body": "list-messages-body"}
        if path == "/new-message":
            if method == "POST":
                return {"action": "new-message-action!", "redirect": "new-message-redirect-uri"}
            return {"body": "new-message-body"}
        if path.startswith("/show-message/"):
            return {"body": "show-message-body"}
        if path.startswith("/edit-message/"):
            if method == "POST":
                return {"action": "edit-message-action!", "redirect": "edit-message-redirect-uri"}
            return {"body": "edit-message-body"}
        raise NotFound(f"No page at {path}")

    @registry.clay(deps=[main_dispatch])
    def response(lookup):
        route = lookup(main_dispatch)
        if "action" in route:
            lookup(route["action"])
        if "redirect" in route:
            return {"status": 302, "location": lookup(route["redirect"])}
        return {"status": 200, "page": lookup(route["body"])}

    return registry


def error_status(error: BaseException | None) -> int:
    """HTTP status for a failed request."""
    cause = error.cause if isinstance(error, ComputationFailed) else error
    if isinstance(cause, AccessDenied):
        return 403
    if isinstance(cause, NotFound):
        return 404
    return 500


# Importing this module (e.g. from ``kiln fire``) declares the graph in the
# default registry with an empty store.
STORE = MessageStore()
register(default_registry(), STORE)
