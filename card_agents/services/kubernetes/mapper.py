"""Translate raw pod resources into AgentPod models.

The mapper is total: any JSON value is accepted and missing or malformed
fields fall back to safe defaults instead of raising.
"""

from typing import Any
from uuid import uuid4

from ...config import settings
from ...models.pods import AgentPod, PodOwnerReference, PodPhase

# Container environment variables surfaced on the pod model
ENV_FIELDS = {
    "AGENT": "agent",
    "MODEL": "model",
    "PROMPT": "prompt",
    "AGENT_RULES": "agent_rules",
}

JOB_NAME_ANNOTATION = "jobName"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0


def _parse_phase(status: dict, metadata: dict) -> PodPhase:
    # The API keeps reporting Running while a pod shuts down
    if _as_str(metadata.get("deletionTimestamp")):
        return PodPhase.TERMINATING
    try:
        return PodPhase(status.get("phase"))
    except ValueError:
        return PodPhase.UNKNOWN


def _select_container_status(statuses: list, primary: str | None) -> dict:
    entries = [_as_dict(s) for s in statuses if isinstance(s, dict)]
    if not entries:
        return {}
    if primary:
        for entry in entries:
            if entry.get("name") == primary:
                return entry
    return entries[0]


def _describe_state(state: dict) -> str | None:
    for key in ("waiting", "terminated"):
        detail = _as_dict(state.get(key))
        if not detail:
            continue
        reason = _as_str(detail.get("reason"))
        message = _as_str(detail.get("message"))
        if key == "terminated" and reason is None and "exitCode" in detail:
            reason = f"Exited with code {_as_int(detail.get('exitCode'))}"
        if reason and message:
            return f"{reason}: {message}"
        if reason or message:
            return reason or message
    return None


def _read_env_fields(containers: list) -> dict[str, str]:
    """Collect AGENT/MODEL/PROMPT/AGENT_RULES values.

    The first container that defines a variable wins; later containers
    cannot override it.
    """
    found: dict[str, str] = {}
    for container in containers:
        for env in _as_list(_as_dict(container).get("env")):
            env = _as_dict(env)
            attr = ENV_FIELDS.get(env.get("name"))
            value = _as_str(env.get("value"))
            if attr and value is not None and attr not in found:
                found[attr] = value
    return found


def map_pod(
    raw: Any,
    namespace: str = "",
    card_id: str = "",
    card_label_key: str | None = None,
) -> AgentPod:
    """Map a raw pod resource to an AgentPod.

    Args:
        raw: Pod resource as decoded from the cluster API
        namespace: Namespace to assume when the resource carries none
        card_id: Card id to assume when the pod has no card label
        card_label_key: Label holding the card id (defaults to settings)

    Returns:
        AgentPod, never raising for malformed input
    """
    resource = _as_dict(raw)
    metadata = _as_dict(resource.get("metadata"))
    spec = _as_dict(resource.get("spec"))
    status = _as_dict(resource.get("status"))
    labels = _as_dict(metadata.get("labels"))
    annotations = _as_dict(metadata.get("annotations"))

    spec_containers = _as_list(spec.get("containers"))
    containers = [name for name in (_as_str(_as_dict(c).get("name")) for c in spec_containers) if name]
    primary = containers[0] if containers else None

    container_statuses = _as_list(status.get("containerStatuses"))
    container_status = _select_container_status(container_statuses, primary)
    state = _as_dict(container_status.get("state"))
    running = _as_dict(state.get("running"))
    terminated = _as_dict(state.get("terminated"))

    pod_start = _as_str(status.get("startTime"))
    runtime_start = _as_str(running.get("startedAt")) or _as_str(terminated.get("startedAt")) or pod_start
    runtime_end = _as_str(terminated.get("finishedAt")) if terminated else None

    restarts = sum(_as_int(_as_dict(s).get("restartCount")) for s in container_statuses)

    owner = None
    owner_refs = _as_list(metadata.get("ownerReferences"))
    if owner_refs:
        first = _as_dict(owner_refs[0])
        owner = PodOwnerReference(
            kind=_as_str(first.get("kind")) or "",
            name=_as_str(first.get("name")) or "",
            uid=_as_str(first.get("uid")),
        )

    name = _as_str(metadata.get("name")) or "unknown"
    job_name = _as_str(annotations.get(JOB_NAME_ANNOTATION))

    last_event = (
        _describe_state(state)
        or _as_str(status.get("message"))
        or _as_str(status.get("reason"))
    )

    return AgentPod(
        id=_as_str(metadata.get("uid")) or str(uuid4()),
        name=name,
        namespace=_as_str(metadata.get("namespace")) or namespace,
        card_id=_as_str(labels.get(card_label_key or settings.card_label_key)) or card_id,
        phase=_parse_phase(status, metadata),
        started_at=pod_start or _as_str(metadata.get("creationTimestamp")) or "",
        runtime_start=runtime_start,
        runtime_end=runtime_end,
        containers=containers,
        last_event=last_event,
        node_name=_as_str(spec.get("nodeName")),
        restarts=restarts,
        owner=owner,
        job_name=job_name,
        display_name=job_name or name,
        **_read_env_fields(spec_containers),
    )
