"""Shared pytest fixtures: an in-memory GitLab served through httpx.MockTransport."""

import json
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest
from pydantic import SecretStr

from gitlab_provider.clients.gitlab import GitLabClient
from gitlab_provider.config.models import GitLabConfig, ProviderConfig, StateConfig
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.core.registry import build_default_registry

TEST_TOKEN = "test-token"
TEST_BASE_URL = "https://gitlab.example.com"

_MULTIPART_FIELD = re.compile(
    rb'name="([^"]+)"(?:; filename="([^"]*)")?\r\n(?:Content-Type: [^\r]*\r\n)?\r\n(.*?)\r\n--',
    re.DOTALL,
)


class FakeGitLab:
    """Minimal in-memory GitLab API for topics, project members and Jira.

    Every request is recorded as ``(method, path)`` in ``calls``; the decoded
    body of each request is kept in ``bodies`` under the same index.
    """

    def __init__(self, version: str = "15.1.0-ee") -> None:
        self.version = version
        self.topics: Dict[int, Dict[str, Any]] = {}
        self.projects: Dict[str, Dict[str, Any]] = {
            "1": {"id": 1, "path_with_namespace": "group/project"},
            "group/project": {"id": 1, "path_with_namespace": "group/project"},
        }
        self.members: Dict[Tuple[str, int], Dict[str, Any]] = {}
        self.jira: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.bodies: List[Any] = []
        self.failures: Dict[Tuple[str, str], List[int]] = {}
        self.next_topic_id = 42

    # Test helpers

    def fail(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next requests to ``method path`` with ``statuses``."""
        self.failures.setdefault((method, path), []).extend(statuses)

    def count(self, method: str, path: Optional[str] = None) -> int:
        return sum(
            1 for m, p in self.calls if m == method and (path is None or p == path)
        )

    def last_body(self, method: str, path: str) -> Any:
        for (m, p), body in zip(reversed(self.calls), reversed(self.bodies)):
            if m == method and p == path:
                return body
        raise AssertionError(f"No {method} {path} request was made")

    # Transport

    def __call__(self, request: httpx.Request) -> httpx.Response:
        raw_path = request.url.raw_path.decode().split("?", 1)[0]
        path = raw_path[len("/api/v4"):] if raw_path.startswith("/api/v4") else raw_path
        segments = [unquote(s) for s in path.strip("/").split("/")]
        method = request.method
        display_path = "/" + "/".join(segments)

        self.calls.append((method, display_path))
        body = self._decode_body(request)
        self.bodies.append(body)

        if request.headers.get("PRIVATE-TOKEN") != TEST_TOKEN:
            return httpx.Response(401, json={"message": "401 Unauthorized"})

        pending = self.failures.get((method, display_path))
        if pending:
            status = pending.pop(0)
            return httpx.Response(status, json={"message": f"{status} injected"})

        return self._route(method, segments, body)

    @staticmethod
    def _decode_body(request: httpx.Request) -> Any:
        content = request.read()
        if not content:
            return None
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("multipart/form-data"):
            fields = {}
            for name, filename, value in _MULTIPART_FIELD.findall(content):
                key = name.decode()
                if filename:
                    fields[key] = {"filename": filename.decode(), "content": value}
                else:
                    fields[key] = value.decode()
            return fields
        return json.loads(content)

    def _route(self, method: str, segments: List[str], body: Any) -> httpx.Response:
        if segments == ["version"] and method == "GET":
            return httpx.Response(200, json={"version": self.version, "revision": "abc"})

        if segments[0] == "topics":
            return self._topics(method, segments[1:], body or {})

        if segments[0] == "projects" and len(segments) >= 2:
            project = segments[1]
            if project not in self.projects:
                return self._not_found("Project")
            rest = segments[2:]
            if not rest and method == "GET":
                return httpx.Response(200, json=self.projects[project])
            if rest and rest[0] == "members":
                return self._members(method, project, rest[1:], body or {})
            if rest == ["services", "jira"]:
                return self._jira(method, project, body or {})

        return self._not_found("Route")

    @staticmethod
    def _not_found(what: str) -> httpx.Response:
        return httpx.Response(404, json={"message": f"404 {what} Not Found"})

    def _topics(self, method: str, rest: List[str], body: Dict[str, Any]) -> httpx.Response:
        if not rest and method == "POST":
            topic_id = self.next_topic_id
            self.next_topic_id += 1
            topic = {
                "id": topic_id,
                "name": body.get("name"),
                "title": body.get("title", body.get("name")),
                "description": body.get("description"),
                "total_projects_count": 0,
                "avatar_url": None,
            }
            self._apply_avatar(topic, body)
            self.topics[topic_id] = topic
            return httpx.Response(201, json=topic)

        topic_id = int(rest[0])
        if topic_id not in self.topics:
            return self._not_found("Topic")
        topic = self.topics[topic_id]

        if method == "GET":
            return httpx.Response(200, json=topic)
        if method == "PUT":
            for key in ("name", "title", "description"):
                if key in body:
                    topic[key] = body[key]
            self._apply_avatar(topic, body)
            return httpx.Response(200, json=topic)
        if method == "DELETE":
            del self.topics[topic_id]
            return httpx.Response(204)
        return httpx.Response(405)

    @staticmethod
    def _apply_avatar(topic: Dict[str, Any], body: Dict[str, Any]) -> None:
        if "avatar" not in body:
            return
        avatar = body["avatar"]
        if isinstance(avatar, dict):
            topic["avatar_url"] = f"https://gitlab.example.com/uploads/{avatar['filename']}"
        else:
            topic["avatar_url"] = None

    def _members(
        self, method: str, project: str, rest: List[str], body: Dict[str, Any]
    ) -> httpx.Response:
        project_id = str(self.projects[project]["id"])
        if not rest and method == "POST":
            key = (project_id, int(body["user_id"]))
            if key in self.members:
                return httpx.Response(409, json={"message": "Member already exists"})
            member = {
                "id": key[1],
                "username": f"user{key[1]}",
                "access_level": body["access_level"],
                "expires_at": body.get("expires_at"),
            }
            self.members[key] = member
            return httpx.Response(201, json=member)

        key = (project_id, int(rest[0]))
        if key not in self.members:
            return self._not_found("Member")
        member = self.members[key]

        if method == "GET":
            return httpx.Response(200, json=member)
        if method == "PUT":
            if "access_level" not in body:
                return httpx.Response(400, json={"error": "access_level is missing"})
            for field in ("access_level", "expires_at"):
                if field in body:
                    member[field] = body[field]
            return httpx.Response(200, json=member)
        if method == "DELETE":
            del self.members[key]
            return httpx.Response(204)
        return httpx.Response(405)

    def _jira(self, method: str, project: str, body: Dict[str, Any]) -> httpx.Response:
        project_id = str(self.projects[project]["id"])
        if method == "PUT":
            for required in ("url", "username", "password"):
                if required not in body:
                    return httpx.Response(400, json={"message": f"{required} is missing"})
            service = self.jira.get(project_id) or {
                "id": 7,
                "title": "Jira",
                "created_at": "2022-01-01T00:00:00.000Z",
                "push_events": True,
                "issues_events": True,
                "commit_events": True,
                "merge_requests_events": True,
                "tag_push_events": True,
                "note_events": True,
                "pipeline_events": True,
                "job_events": True,
                "comment_on_event_enabled": True,
                "properties": {},
            }
            service["active"] = True
            service["updated_at"] = "2022-01-02T00:00:00.000Z"
            for toggle in [k for k in body if k.endswith("_events") or k == "comment_on_event_enabled"]:
                service[toggle] = body[toggle]
            service["properties"] = {
                "url": body["url"],
                "username": body["username"],
                "project_key": body.get("project_key", service["properties"].get("project_key")),
                "jira_issue_transition_id": body.get(
                    "jira_issue_transition_id",
                    service["properties"].get("jira_issue_transition_id"),
                ),
            }
            self.jira[project_id] = service
            return httpx.Response(200, json=service)

        if project_id not in self.jira:
            return self._not_found("Service")
        service = self.jira[project_id]
        if method == "GET":
            return httpx.Response(200, json=service)
        if method == "DELETE":
            service["active"] = False
            service["properties"] = {}
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def fake_gitlab():
    """In-memory GitLab reporting version 15.1."""
    return FakeGitLab()


@pytest.fixture
def transport(fake_gitlab):
    return httpx.MockTransport(fake_gitlab)


@pytest.fixture
def gitlab_client(transport):
    """GitLab client wired to the fake, without retries."""
    client = GitLabClient(
        base_url=TEST_BASE_URL,
        token=SecretStr(TEST_TOKEN),
        max_retries=0,
        retry_delay_seconds=0,
        transport=transport,
    )
    yield client
    client.close()


@pytest.fixture
def provider_context(gitlab_client):
    return ProviderContext(client=gitlab_client)


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def provider_config(tmp_path):
    """Configuration pointing at the fake with a temporary state file."""
    return ProviderConfig(
        gitlab=GitLabConfig(
            base_url=TEST_BASE_URL,
            token=SecretStr(TEST_TOKEN),
            max_retries=0,
            retry_delay_seconds=0,
        ),
        state=StateConfig(path=tmp_path / "state.json"),
    )
