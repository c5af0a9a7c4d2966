from __future__ import annotations

import logging
from typing import Final, Mapping

from mergetrain.models import EventKind, InboundEvent
from mergetrain.observability import log_event


LOGGER = logging.getLogger("mergetrain.events")
_EVENT_KINDS: Final[dict[str, EventKind]] = {
    "status": "status",
    "ping": "ping",
    "labeled": "labeled",
    "unlabeled": "unlabeled",
    "pull_request.labeled": "labeled",
    "pull_request.unlabeled": "unlabeled",
}


def parse_event(name: str, payload: Mapping[str, object]) -> InboundEvent | None:
    """Map a GitHub webhook delivery onto an ``InboundEvent``.

    Unknown event names and malformed payloads are logged and yield ``None``.
    """
    kind = _EVENT_KINDS.get(name)
    if kind is None:
        log_event(LOGGER, "event_ignored", event_name=name, reason="unsupported_event")
        return None

    repository = _as_mapping(payload.get("repository"))
    repo_name = _as_non_empty_str(repository.get("name")) if repository else None
    owner_obj = _as_mapping(repository.get("owner")) if repository else None
    owner = _as_non_empty_str(owner_obj.get("login")) if owner_obj else None
    if repo_name is None or owner is None:
        log_event(LOGGER, "event_ignored", event_name=name, reason="missing_repository")
        return None

    if kind in ("status", "ping"):
        return InboundEvent(kind=kind, owner=owner, repository=repo_name)

    label_obj = _as_mapping(payload.get("label"))
    pull_request_obj = _as_mapping(payload.get("pull_request"))
    label_name = _as_non_empty_str(label_obj.get("name")) if label_obj else None
    number = pull_request_obj.get("number") if pull_request_obj else None
    if label_name is None or not isinstance(number, int) or isinstance(number, bool):
        log_event(
            LOGGER,
            "event_ignored",
            event_name=name,
            repo_full_name=f"{owner}/{repo_name}",
            reason="missing_label_or_pull_request",
        )
        return None
    return InboundEvent(
        kind=kind,
        owner=owner,
        repository=repo_name,
        changeset_number=number,
        label_name=label_name,
    )


def _as_mapping(value: object) -> Mapping[str, object] | None:
    if not isinstance(value, Mapping):
        return None
    return value


def _as_non_empty_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
