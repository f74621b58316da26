"""Workflowy API client."""

from typing import Any

import requests
from loguru import logger

from workflowy_cache.config import API_BASE_URL, HTTP_TIMEOUT, resolve_api_key
from workflowy_cache.errors import AuthenticationError, NotFoundError, WorkflowyApiError
from workflowy_cache.models.node import RemoteNode


def _parent_param(parent_id: str | None) -> str:
    return "None" if parent_id is None else parent_id


def _parse_nodes(records: Any, path: str) -> list[RemoteNode]:
    """Validate node records, failing the whole response on a malformed one."""
    try:
        return [RemoteNode.from_payload(r) for r in records]
    except (TypeError, ValueError) as e:
        msg = f"Malformed node in response to {path}: {e}"
        raise WorkflowyApiError(msg) from e


class WorkflowyApi:
    """Encapsulated Workflowy REST API with bearer authentication."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = API_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sess = session or requests.Session()
        self.sess.headers.update({"Content-Type": "application/json"})

    @property
    def api_key(self) -> str:
        """The bearer token, looked up on first use so a missing key fails per call."""
        if self._api_key is None:
            self._api_key = resolve_api_key()
        return self._api_key

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Invoke an API endpoint, return the decoded JSON body ({} if empty)."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("Making request: {} {} {}", method, path, repr(params or body)[:64])

        try:
            r = self.sess.request(
                method,
                url,
                params=params,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"API request failed: {method} {path}: {e}"
            raise WorkflowyApiError(msg) from e

        if r.status_code in (401, 403):
            msg = f"Workflowy rejected the API key ({r.status_code})"
            raise AuthenticationError(msg, status=r.status_code)
        if r.status_code == 404:
            msg = f"Not found: {method} {path}"
            raise NotFoundError(msg, status=404)
        if not r.ok:
            msg = f"API error: {r.status_code} {r.reason} ({method} {path})"
            raise WorkflowyApiError(msg, status=r.status_code)

        if not r.content:
            return {}
        try:
            rv = r.json()
        except ValueError as e:
            msg = f"API returned invalid JSON: {method} {path}"
            raise WorkflowyApiError(msg, status=r.status_code) from e
        return rv if isinstance(rv, dict) else {"data": rv}

    def validate_token(self) -> None:
        """Raise AuthenticationError if the API key is not accepted."""
        self.request("GET", "targets")

    def export_nodes(self) -> list[RemoteNode]:
        rv = self.request("GET", "nodes-export")
        return _parse_nodes(rv.get("nodes") or [], "nodes-export")

    def get_node(self, node_id: str) -> RemoteNode:
        rv = self.request("GET", f"nodes/{node_id}")
        raw = rv.get("node")
        if not isinstance(raw, dict):
            msg = f"No node in response for {node_id!r}"
            raise WorkflowyApiError(msg)
        return _parse_nodes([raw], f"nodes/{node_id}")[0]

    def list_children(self, parent_id: str | None) -> list[RemoteNode]:
        rv = self.request("GET", "nodes", params={"parent_id": _parent_param(parent_id)})
        return _parse_nodes(rv.get("nodes") or [], "nodes")

    def create_node(
        self,
        *,
        name: str,
        parent_id: str | None,
        note: str | None = None,
        position: str | None = None,
    ) -> str:
        body: dict[str, Any] = {"name": name, "parent_id": _parent_param(parent_id)}
        if note:
            body["note"] = note
        if position:
            body["position"] = position
        rv = self.request("POST", "nodes", body=body)
        new_id = rv.get("item_id") or rv.get("id")
        if not isinstance(new_id, str):
            msg = f"Create returned no item_id: {rv!r}"
            raise WorkflowyApiError(msg)
        return new_id

    def update_node(
        self, node_id: str, *, name: str | None = None, note: str | None = None
    ) -> None:
        body: dict[str, Any] = {}
        if name is not None:
            body["name"] = name
        if note is not None:
            body["note"] = note
        if not body:
            return
        self.request("POST", f"nodes/{node_id}", body=body)

    def set_completed(self, node_id: str, completed: bool) -> None:
        endpoint = "complete" if completed else "uncomplete"
        self.request("POST", f"nodes/{node_id}/{endpoint}")

    def delete_node(self, node_id: str) -> None:
        self.request("DELETE", f"nodes/{node_id}")

    def move_node(self, node_id: str, parent_id: str | None) -> None:
        self.request("POST", f"nodes/{node_id}/move", body={"parent_id": _parent_param(parent_id)})
