"""Tests for the resource manifest."""

import pytest

from gitlab_provider.clients.exceptions import ConfigurationError
from gitlab_provider.core.manifest import ManifestLoader
from gitlab_provider.resources.project_memberships import ProjectMembershipState
from gitlab_provider.resources.topics import TopicState

MANIFEST_YAML = """
resources:
  - type: gitlab_topic
    name: engineering
    attributes:
      name: engineering
      title: Engineering
  - type: gitlab_project_membership
    name: bob
    attributes:
      project_id: 1
      user_id: 17
      access_level: Developer
"""


def write(tmp_path, content):
    path = tmp_path / "resources.yaml"
    path.write_text(content)
    return path


class TestManifestLoader:
    """Test loading and validating manifests."""

    def test_load_and_validate(self, tmp_path, registry):
        manifest = ManifestLoader().load(write(tmp_path, MANIFEST_YAML))

        assert manifest.addresses() == [
            "gitlab_topic.engineering",
            "gitlab_project_membership.bob",
        ]
        desired = manifest.desired_states(registry)
        (_, topic), (_, member) = desired
        assert isinstance(topic, TopicState)
        assert topic.title == "Engineering"
        assert isinstance(member, ProjectMembershipState)
        assert member.project_id == "1"
        assert member.access_level == "developer"

    def test_empty_manifest(self, tmp_path):
        assert ManifestLoader().load(write(tmp_path, "")).resources == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ManifestLoader().load(tmp_path / "nope.yaml")

    def test_duplicate_addresses(self, tmp_path):
        content = """
resources:
  - {type: gitlab_topic, name: a, attributes: {name: a}}
  - {type: gitlab_topic, name: a, attributes: {name: b}}
"""
        with pytest.raises(ConfigurationError, match="more than once"):
            ManifestLoader().load(write(tmp_path, content))

    def test_invalid_name(self, tmp_path):
        content = "resources:\n  - {type: gitlab_topic, name: 'has space', attributes: {}}\n"

        with pytest.raises(ConfigurationError):
            ManifestLoader().load(write(tmp_path, content))

    def test_declaring_id_is_rejected(self, tmp_path):
        content = "resources:\n  - {type: gitlab_topic, name: a, attributes: {name: a, id: '3'}}\n"

        with pytest.raises(ConfigurationError, match="computed"):
            ManifestLoader().load(write(tmp_path, content))

    def test_unknown_type_and_bad_attributes(self, tmp_path, registry):
        content = """
resources:
  - {type: gitlab_group, name: a}
  - {type: gitlab_topic, name: b, attributes: {title: No name}}
  - {type: gitlab_topic, name: c, attributes: {name: c, colour: red}}
"""
        manifest = ManifestLoader().load(write(tmp_path, content))

        with pytest.raises(ConfigurationError) as exc_info:
            manifest.desired_states(registry)

        message = str(exc_info.value)
        assert "gitlab_group.a: unknown resource type" in message
        assert "gitlab_topic.b.name" in message
        assert "gitlab_topic.c.colour" in message

    def test_not_a_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ManifestLoader().load(write(tmp_path, "- just\n- a list\n"))
