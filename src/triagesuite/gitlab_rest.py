from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

DEFAULT_HOST_URL = "https://gitlab.com"
API_PREFIX = "/api/v4"
USER_AGENT = "triagesuite-rest/0.1.0"
HTTP_ERROR_STATUS = 400
HTTP_NOT_FOUND = 404


class GitLabAPIError(RuntimeError):
    """Raised when the GitLab REST API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


def _encode_id(value: int | str) -> str:
    """Project/group ids may be numeric or a full path (``group/project``)."""
    return quote(str(value), safe="")


@dataclass
class GitLabRestClient:
    """Lightweight REST client for the GitLab v4 API.

    Only the endpoints the triage engine needs are wrapped. Every call is
    synchronous and is never retried; a failing response raises
    ``GitLabAPIError`` for the rule processor to catch.
    """

    token: str
    host_url: str = DEFAULT_HOST_URL
    session: requests.Session | None = None
    timeout: float = 30
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("PRIVATE-TOKEN", self.token)
        self._session.headers.setdefault("Accept", "application/json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    @property
    def api_url(self) -> str:
        return f"{self.host_url.rstrip('/')}{API_PREFIX}"

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = path if path.startswith("http") else f"{self.api_url}/{path.lstrip('/')}"
        response = self._session.request(
            method,
            url,
            params=params,
            json=json_body,
            headers=self._session.headers,
            timeout=self.timeout,
        )
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitLabAPIError(
                f"GitLab API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        if response.text:
            try:
                return response.json()
            except ValueError:  # pragma: no cover - non-JSON body
                return response.text
        return None

    def _paginate(self, path: str, *, params: dict[str, Any] | None = None) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    @staticmethod
    def _dicts(data: Iterable[Any]) -> list[dict[str, Any]]:
        return [entry for entry in data if isinstance(entry, dict)]

    # ---- Projects / groups --------------------------------------------
    def get_project(self, project_id: int | str) -> dict[str, Any]:
        return self._request("GET", f"/projects/{_encode_id(project_id)}")

    def list_member_projects(self) -> list[dict[str, Any]]:
        return self._dicts(
            self._paginate("/projects", params={"membership": "true", "archived": "false"})
        )

    def get_group_member(self, group_id: int | str, user_id: int) -> dict[str, Any] | None:
        return self._get_member(f"/groups/{_encode_id(group_id)}/members/all/{user_id}")

    def get_project_member(self, project_id: int | str, user_id: int) -> dict[str, Any] | None:
        return self._get_member(f"/projects/{_encode_id(project_id)}/members/all/{user_id}")

    def _get_member(self, path: str) -> dict[str, Any] | None:
        try:
            data = self._request("GET", path)
        except GitLabAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return None
            raise
        return data if isinstance(data, dict) else None

    # ---- Listings -----------------------------------------------------
    def list_issues(self, source: str, source_id: int | str) -> list[dict[str, Any]]:
        return self._dicts(self._paginate(f"/{source}/{_encode_id(source_id)}/issues"))

    def list_merge_requests(self, source: str, source_id: int | str) -> list[dict[str, Any]]:
        return self._dicts(self._paginate(f"/{source}/{_encode_id(source_id)}/merge_requests"))

    def list_branches(self, project_id: int | str) -> list[dict[str, Any]]:
        branches = self._dicts(
            self._paginate(f"/projects/{_encode_id(project_id)}/repository/branches")
        )
        # Branch payloads do not carry their project; stamp it so actions can address them.
        return [{**branch, "project_id": project_id} for branch in branches]

    def get_issue(self, project_id: int | str, iid: int) -> dict[str, Any]:
        return self._request("GET", f"/projects/{_encode_id(project_id)}/issues/{iid}")

    def get_merge_request(self, project_id: int | str, iid: int) -> dict[str, Any]:
        return self._request("GET", f"/projects/{_encode_id(project_id)}/merge_requests/{iid}")

    # ---- Mutations ----------------------------------------------------
    def edit_issue(self, project_id: int | str, iid: int, **fields: Any) -> Any:
        return self._request(
            "PUT", f"/projects/{_encode_id(project_id)}/issues/{iid}", json_body=fields
        )

    def edit_merge_request(self, project_id: int | str, iid: int, **fields: Any) -> Any:
        return self._request(
            "PUT", f"/projects/{_encode_id(project_id)}/merge_requests/{iid}", json_body=fields
        )

    def create_issue_note(
        self,
        project_id: int | str,
        iid: int,
        body: str,
        *,
        internal: bool = False,
        thread: bool = False,
    ) -> Any:
        # A "thread" is a discussion rather than a plain note.
        kind = "discussions" if thread else "notes"
        return self._request(
            "POST",
            f"/projects/{_encode_id(project_id)}/issues/{iid}/{kind}",
            json_body={"body": body, "internal": internal},
        )

    def create_merge_request_note(
        self, project_id: int | str, iid: int, body: str, *, internal: bool = False
    ) -> Any:
        return self._request(
            "POST",
            f"/projects/{_encode_id(project_id)}/merge_requests/{iid}/notes",
            json_body={"body": body, "internal": internal},
        )

    def move_issue(self, project_id: int | str, iid: int, to_project: int | str) -> Any:
        return self._request(
            "POST",
            f"/projects/{_encode_id(project_id)}/issues/{iid}/move",
            json_body={"to_project_id": to_project},
        )

    def create_issue(
        self, project_id: int | str, *, title: str, description: str = ""
    ) -> dict[str, Any] | None:
        data = self._request(
            "POST",
            f"/projects/{_encode_id(project_id)}/issues",
            json_body={"title": title, "description": description},
        )
        return data if isinstance(data, dict) else None

    def delete_branch(self, project_id: int | str, branch: str) -> None:
        self._request(
            "DELETE",
            f"/projects/{_encode_id(project_id)}/repository/branches/{_encode_id(branch)}",
        )

    def merge_merge_request(self, project_id: int | str, iid: int, **options: Any) -> Any:
        return self._request(
            "PUT",
            f"/projects/{_encode_id(project_id)}/merge_requests/{iid}/merge",
            json_body=options or None,
        )

    def cancel_merge_when_pipeline_succeeds(self, project_id: int | str, iid: int) -> Any:
        return self._request(
            "POST",
            f"/projects/{_encode_id(project_id)}/merge_requests/{iid}"
            "/cancel_merge_when_pipeline_succeeds",
        )


__all__ = [
    "DEFAULT_HOST_URL",
    "GitLabAPIError",
    "GitLabRestClient",
]
