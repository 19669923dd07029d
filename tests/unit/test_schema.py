"""Tests for the attribute schema and the state/payload mapping."""

from typing import Optional

import pytest
from pydantic import ValidationError

from gitlab_provider.clients.exceptions import UnexpectedRemoteValueError
from gitlab_provider.resources.jira_service import JiraServiceState
from gitlab_provider.resources.schema import (
    AttributeKind,
    AttributeMapper,
    ResourceState,
    attribute,
    changed_fields,
    lookup_path,
)


class SampleState(ResourceState):
    name: str = attribute(kind=AttributeKind.REQUIRED, description="Name.")
    display: str = attribute(
        "", kind=AttributeKind.OPTIONAL, remote_name="display_name", description="Display."
    )
    secret: str = attribute("", kind=AttributeKind.OPTIONAL, sensitive=True, description="Secret.")
    size: int = attribute(0, kind=AttributeKind.COMPUTED, description="Size.")
    flag: Optional[bool] = attribute(None, kind=AttributeKind.OPTIONAL_COMPUTED, description="Flag.")
    path: str = attribute("", kind=AttributeKind.LOCAL, description="Local path.")
    nested: str = attribute(
        "", kind=AttributeKind.OPTIONAL, read_path="properties.nested", description="Nested."
    )


@pytest.fixture
def mapper():
    return AttributeMapper(SampleState)


class TestResourceState:
    """Test the state base model."""

    def test_states_are_immutable(self):
        state = SampleState(name="a")

        with pytest.raises(ValidationError):
            state.name = "b"

    def test_unknown_attributes_are_rejected(self):
        with pytest.raises(ValidationError):
            SampleState(name="a", unknown="x")

    def test_is_set_requires_explicit_non_empty_value(self):
        state = SampleState(name="a", display="", flag=False)

        assert state.is_set("name")
        assert not state.is_set("display")
        assert state.is_set("flag")
        assert not state.is_set("nested")

    def test_with_values_keeps_explicit_fields(self):
        state = SampleState(name="a").with_values(display="shown")

        assert state.display == "shown"
        assert state.is_set("name")
        assert state.is_set("display")

    def test_public_dict_drops_sensitive(self):
        data = SampleState(name="a", secret="hunter2").public_dict()

        assert "secret" not in data
        assert data["name"] == "a"

    def test_attribute_specs(self):
        specs = SampleState.attribute_specs()

        assert specs["id"].kind is AttributeKind.COMPUTED
        assert specs["id"].path_param
        assert specs["display"].outbound_key == "display_name"
        assert specs["nested"].inbound_path == "properties.nested"
        assert not specs["secret"].reads_from_remote
        assert not specs["path"].is_outbound


class TestToRemotePayload:
    """Test building request bodies."""

    def test_create_sends_required_and_explicit_optionals(self, mapper):
        payload = mapper.to_remote_payload(SampleState(name="a", display="A", flag=False))

        assert payload == {"name": "a", "display_name": "A", "flag": False}

    def test_create_never_sends_computed_local_or_identity(self, mapper):
        state = SampleState(id="9", name="a", size=3, path="/tmp/x")

        assert mapper.to_remote_payload(state) == {"name": "a"}

    def test_update_sends_exactly_changed_fields(self, mapper):
        desired = SampleState(name="a", display="B", secret="s")

        assert mapper.to_remote_payload(desired, {"display"}) == {"display_name": "B"}

    def test_update_ignores_changed_non_outbound_fields(self, mapper):
        desired = SampleState(name="a", path="/tmp/x")

        assert mapper.to_remote_payload(desired, {"path", "size"}) == {}

    def test_sensitive_values_are_sent(self, mapper):
        desired = SampleState(name="a", secret="s")

        assert mapper.to_remote_payload(desired, {"secret"}) == {"secret": "s"}

    def test_converters_apply_outbound(self):
        mapper = AttributeMapper(SampleState, outbound={"name": str.upper})

        assert mapper.to_remote_payload(SampleState(name="a")) == {"name": "A"}


class TestFromRemoteEntity:
    """Test building state from remote payloads."""

    def test_every_attribute_gets_a_value(self, mapper):
        values = mapper.from_remote_entity({"name": "a"})

        assert set(values) == set(SampleState.model_fields)
        assert values["display"] == ""
        assert values["size"] == 0
        assert values["flag"] is None

    def test_sensitive_never_read_back(self, mapper):
        values = mapper.from_remote_entity(
            {"name": "a", "secret": "leaked"}, {"secret": "kept"}
        )

        assert values["secret"] == "kept"

    def test_local_and_identity_come_from_prior(self, mapper):
        values = mapper.from_remote_entity(
            {"name": "a", "id": 99, "path": "remote"}, {"id": "9", "path": "/tmp/x"}
        )

        assert values["id"] == "9"
        assert values["path"] == "/tmp/x"

    def test_null_becomes_zero_value(self, mapper):
        values = mapper.from_remote_entity({"name": "a", "display": None, "size": None})

        assert values["size"] == 0

    def test_nested_read_path(self, mapper):
        values = mapper.from_remote_entity({"name": "a", "properties": {"nested": "deep"}})

        assert values["nested"] == "deep"

    def test_read_uses_attribute_name_not_remote_name(self, mapper):
        values = mapper.from_remote_entity({"name": "a", "display": "D", "display_name": "X"})

        assert values["display"] == "D"

    def test_to_state_validates(self, mapper):
        state = mapper.to_state({"name": "a", "size": 5}, {"id": "1"})

        assert isinstance(state, SampleState)
        assert state.size == 5

    def test_to_state_rejects_unexpected_remote_values(self, mapper):
        with pytest.raises(UnexpectedRemoteValueError) as exc_info:
            mapper.to_state({"name": "a", "size": "lots"}, {"id": "1"})

        assert exc_info.value.field == "size"

    def test_lookup_path_stops_at_non_mappings(self):
        assert lookup_path({"a": "x"}, "a.b") is None
        assert lookup_path({"a": {"b": 1}}, "a.b") == 1


class TestChangedFields:
    """Test the delta between last-read and desired state."""

    def test_computed_never_counts(self):
        prior = SampleState(name="a", size=4)
        desired = SampleState(name="a")

        assert changed_fields(prior, desired) == set()

    def test_unset_optional_computed_does_not_count(self):
        prior = SampleState(name="a", flag=True)

        assert changed_fields(prior, SampleState(name="a")) == set()
        assert changed_fields(prior, SampleState(name="a", flag=False)) == {"flag"}

    def test_changed_attributes(self):
        prior = SampleState(name="a", display="A", path="/old")
        desired = SampleState(name="b", display="A", path="/new")

        assert changed_fields(prior, desired) == {"name", "path"}

    def test_jira_event_toggles_left_to_server(self):
        base = dict(project="1", url="https://jira.example.com", username="u", password="p")
        prior = JiraServiceState(**base, push_events=False, active=True)

        assert changed_fields(prior, JiraServiceState(**base)) == set()
