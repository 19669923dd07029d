"""Tests for planning and applying manifests against the in-memory GitLab."""

import json

import pytest

from gitlab_provider.clients.exceptions import StateError
from gitlab_provider.core.executor import Executor, PlanAction, Planner
from gitlab_provider.core.manifest import Manifest, ManifestEntry
from gitlab_provider.core.state import StateStore

TOPIC = {"type": "gitlab_topic", "name": "eng", "attributes": {"name": "eng", "title": "Engineering"}}
MEMBER = {
    "type": "gitlab_project_membership",
    "name": "bob",
    "attributes": {"project_id": 1, "user_id": 17, "access_level": "developer"},
}
JIRA = {
    "type": "gitlab_service_jira",
    "name": "jira",
    "attributes": {
        "project": "1",
        "url": "https://jira.example.com",
        "username": "bot",
        "password": "s3cret",
    },
}


def manifest(*entries):
    return Manifest(resources=[ManifestEntry(**entry) for entry in entries])


def with_attributes(entry, **attributes):
    updated = dict(entry)
    updated["attributes"] = dict(entry["attributes"], **attributes)
    return updated


@pytest.fixture
def store(tmp_path):
    return StateStore.open(tmp_path / "state.json")


@pytest.fixture
def planner(registry, provider_context, store):
    return Planner(registry, provider_context, store)


@pytest.fixture
def executor(registry, provider_context, store):
    return Executor(registry, provider_context, store)


def actions(plan):
    return {item.address: item.action for item in plan.items}


class TestPlanner:
    """Test computing plans."""

    def test_new_resources_are_created(self, planner):
        plan = planner.plan(manifest(TOPIC, MEMBER))

        assert actions(plan) == {
            "gitlab_topic.eng": PlanAction.CREATE,
            "gitlab_project_membership.bob": PlanAction.CREATE,
        }
        assert plan.summary()["create"] == 2
        assert plan.has_changes

    def test_applied_manifest_is_up_to_date(self, planner, executor):
        executor.apply(planner.plan(manifest(TOPIC, MEMBER, JIRA)))

        plan = planner.plan(manifest(TOPIC, MEMBER, JIRA))

        assert set(actions(plan).values()) == {PlanAction.NOOP}
        assert not plan.has_changes

    def test_changed_attribute_is_updated(self, planner, executor):
        executor.apply(planner.plan(manifest(TOPIC)))

        plan = planner.plan(manifest(with_attributes(TOPIC, description="All engineers")))

        (item,) = plan.items
        assert item.action == PlanAction.UPDATE
        assert item.identity == "42"
        assert item.changes == ["description"]

    def test_force_new_change_is_replaced(self, planner, executor):
        executor.apply(planner.plan(manifest(MEMBER)))

        plan = planner.plan(manifest(with_attributes(MEMBER, user_id=18)))

        assert plan.items[0].action == PlanAction.REPLACE

    def test_undeclared_resource_is_deleted(self, planner, executor):
        executor.apply(planner.plan(manifest(TOPIC, MEMBER)))

        plan = planner.plan(manifest(MEMBER))

        assert actions(plan)["gitlab_topic.eng"] == PlanAction.DELETE
        assert plan.items[-1].address == "gitlab_topic.eng"

    def test_vanished_resource_is_created_again(self, planner, executor, fake_gitlab):
        executor.apply(planner.plan(manifest(TOPIC)))
        fake_gitlab.topics.clear()

        plan = planner.plan(manifest(TOPIC))

        assert plan.items[0].action == PlanAction.CREATE
        assert plan.items[0].reason == "no longer exists remotely"

    def test_mismatched_state_entry_is_rejected(self, registry, provider_context, tmp_path):
        state_file = tmp_path / "edited.json"
        state_file.write_text(json.dumps({
            "version": 1,
            "resources": {
                "gitlab_topic.eng": {
                    "type": "gitlab_service_jira",
                    "name": "eng",
                    "identity": "1",
                    "attributes": {},
                },
            },
        }))
        planner = Planner(registry, provider_context, StateStore.open(state_file))

        with pytest.raises(StateError):
            planner.plan(manifest(TOPIC))

    def test_destroy_plan(self, planner, executor):
        executor.apply(planner.plan(manifest(TOPIC, MEMBER)))

        plan = planner.plan_destroy()

        assert set(actions(plan).values()) == {PlanAction.DELETE}
        assert len(plan.items) == 2


class TestExecutor:
    """Test applying plans."""

    def test_apply_records_identities(self, planner, executor, store):
        results = executor.apply(planner.plan(manifest(TOPIC, MEMBER)))

        assert all(result.success for result in results)
        assert store.get("gitlab_topic.eng").identity == "42"
        assert store.get("gitlab_project_membership.bob").identity == "1:17"

    def test_update_is_applied(self, planner, executor, fake_gitlab):
        executor.apply(planner.plan(manifest(TOPIC)))

        executor.apply(planner.plan(manifest(with_attributes(TOPIC, description="All engineers"))))

        assert fake_gitlab.topics[42]["description"] == "All engineers"
        assert fake_gitlab.last_body("PUT", "/topics/42") == {"description": "All engineers"}

    def test_replace_deletes_then_creates(self, planner, executor, fake_gitlab, store):
        executor.apply(planner.plan(manifest(MEMBER)))

        executor.apply(planner.plan(manifest(with_attributes(MEMBER, user_id=18))))

        assert ("1", 17) not in fake_gitlab.members
        assert ("1", 18) in fake_gitlab.members
        assert store.get("gitlab_project_membership.bob").identity == "1:18"

    def test_delete_forgets_resource(self, planner, executor, fake_gitlab, store):
        executor.apply(planner.plan(manifest(TOPIC)))

        executor.apply(planner.plan(manifest()))

        assert fake_gitlab.topics == {}
        assert "gitlab_topic.eng" not in store

    def test_destroy_on_old_version_uses_soft_destroy(self, planner, executor, fake_gitlab, store):
        fake_gitlab.version = "14.8.0"
        topic = {"type": "gitlab_topic", "name": "old", "attributes": {"name": "old", "soft_destroy": True}}
        executor.apply(planner.plan(manifest(topic)))

        results = executor.apply(planner.plan_destroy())

        assert results[0].success
        assert 42 in fake_gitlab.topics
        assert fake_gitlab.count("DELETE") == 0
        assert len(store) == 0

    def test_failure_stops_apply_and_keeps_earlier_progress(self, planner, executor, fake_gitlab, store):
        fake_gitlab.fail("POST", "/projects/1/members", 500)

        results = executor.apply(planner.plan(manifest(TOPIC, MEMBER, JIRA)))

        assert [r.success for r in results] == [True, False]
        assert "create" in results[1].error_message
        assert "gitlab_topic.eng" in store
        assert "gitlab_project_membership.bob" not in store

    def test_continue_on_error(self, planner, executor, fake_gitlab, store):
        fake_gitlab.fail("POST", "/projects/1/members", 500)

        results = executor.apply(
            planner.plan(manifest(TOPIC, MEMBER, JIRA)), continue_on_error=True
        )

        assert [r.success for r in results] == [True, False, True]
        assert "gitlab_service_jira.jira" in store

    def test_progress_callback(self, registry, provider_context, store, planner):
        seen = []
        executor = Executor(
            registry,
            provider_context,
            store,
            progress_callback=lambda item, result: seen.append((item.address, result.success)),
        )

        executor.apply(planner.plan(manifest(TOPIC)))

        assert seen == [("gitlab_topic.eng", True)]
