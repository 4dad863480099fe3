"""Tests for per-kind latest-version resolution."""

import pytest
from unittest.mock import Mock

from dependency import Dependency, ImageReference, SourceKind
from registry_api import RegistryError
from resolvers import (
    ImageReferenceResolver, ResolverSet, VersionVariableResolver, split_image_family,
)
from tests.conftest import UPGRADE_TAG_NAMES, tags_from


def _variable(name, current):
    return Dependency(
        name=name, current_version=current, file="build-images.sh",
        source_kind=SourceKind.VERSION_VARIABLE,
    )


def _image(raw):
    image = ImageReference.parse(raw)
    return Dependency(
        name=image.repository, current_version=image.tag, file="build-images.sh",
        source_kind=SourceKind.IMAGE_REFERENCE, image=image,
    )


@pytest.fixture
def list_tags():
    return Mock(return_value=tags_from(UPGRADE_TAG_NAMES))


class TestSplitImageFamily:

    def test_with_registry(self):
        assert split_image_family("ghcr.io/org/app") == ("ghcr.io", "org/app")

    def test_bare_name_defaults_to_docker_hub(self):
        assert split_image_family("penpotapp/frontend") == ("docker.io", "penpotapp/frontend")
        assert split_image_family("postgres") == ("docker.io", "postgres")


class TestVersionVariableResolver:

    def test_nearest_upgrade(self, list_tags):
        resolver = VersionVariableResolver(list_tags, {"demo": "ghcr.io/org/demo"})
        assert resolver.resolve(_variable("demo_version", "1.2.0")) == "1.2.1"
        list_tags.assert_called_once_with("ghcr.io", "org/demo")

    def test_default_families(self, list_tags):
        resolver = VersionVariableResolver(list_tags)
        resolver.resolve(_variable("penpot_version", "1.2.0"))
        list_tags.assert_called_once_with("docker.io", "penpotapp/frontend")

    def test_keeps_v_prefix(self, list_tags):
        resolver = VersionVariableResolver(list_tags, {"demo": "docker.io/org/demo"})
        assert resolver.resolve(_variable("demo_version", "v1.2.0")) == "v1.2.1"

    def test_writes_back_registry_tag_name(self):
        """A qualified tag with no plain counterpart is written back as published."""
        list_tags = Mock(return_value=tags_from(["2.8.0", "2.8.1-ls5", "2.9.0"]))
        resolver = VersionVariableResolver(list_tags, {"demo": "docker.io/org/demo"})
        assert resolver.resolve(_variable("demo_version", "2.8.0")) == "2.8.1-ls5"

    @pytest.mark.parametrize("current,expected", [
        ("1.2.0", "1.2.1"),
        ("v1.2.0", "v1.2.1"),
    ])
    def test_v_prefix_follows_current_pin(self, current, expected):
        list_tags = Mock(return_value=tags_from(["v1.2.0", "v1.2.1"]))
        resolver = VersionVariableResolver(list_tags, {"demo": "docker.io/org/demo"})
        assert resolver.resolve(_variable("demo_version", current)) == expected

    def test_unknown_app_keeps_current(self, list_tags):
        resolver = VersionVariableResolver(list_tags)
        assert resolver.resolve(_variable("unknown_version", "1.0.0")) == "1.0.0"
        list_tags.assert_not_called()

    def test_already_newest(self, list_tags):
        resolver = VersionVariableResolver(list_tags, {"demo": "docker.io/org/demo"})
        assert resolver.resolve(_variable("demo_version", "2.0.0")) == "2.0.0"

    def test_registry_error_propagates(self):
        resolver = VersionVariableResolver(
            Mock(side_effect=RegistryError("docker.io", "org/demo", "boom")),
            {"demo": "docker.io/org/demo"},
        )
        with pytest.raises(RegistryError):
            resolver.resolve(_variable("demo_version", "1.0.0"))


class TestImageReferenceResolver:

    def test_absolute_latest(self, list_tags):
        resolver = ImageReferenceResolver(list_tags)
        assert resolver.resolve(_image("docker.io/org/demo:1.2.0")) == "2.0.0"
        list_tags.assert_called_once_with("docker.io", "org/demo")

    def test_returns_raw_tag_name(self):
        resolver = ImageReferenceResolver(Mock(return_value=tags_from(["v8.16.2-ls374", "v8.12.0-ls359"])))
        assert resolver.resolve(_image("docker.io/linuxserver/calibre:v8.12.0-ls359")) == "v8.16.2-ls374"

    @pytest.mark.parametrize("raw", ["docker.io/org/demo", "docker.io/org/demo:latest"])
    def test_floating_tag_untouched(self, list_tags, raw):
        resolver = ImageReferenceResolver(list_tags)
        assert resolver.resolve(_image(raw)) == "latest"
        list_tags.assert_not_called()

    def test_no_versioned_tags(self):
        resolver = ImageReferenceResolver(Mock(return_value=tags_from(["15", "16", "alpine"])))
        assert resolver.resolve(_image("docker.io/postgres:15")) == "15"


class TestResolverSet:

    def test_dispatch_by_kind(self):
        client = Mock()
        client.list_tags.return_value = tags_from(UPGRADE_TAG_NAMES)
        resolvers = ResolverSet(client=client, image_families={"demo": "docker.io/org/demo"})

        assert resolvers.resolve(_variable("demo_version", "1.2.0")) == "1.2.1"
        assert resolvers.resolve(_image("docker.io/org/demo:1.2.0")) == "2.0.0"
        assert isinstance(resolvers.resolver_for(SourceKind.IMAGE_REFERENCE), ImageReferenceResolver)

    def test_tag_listing_cached(self):
        client = Mock()
        client.list_tags.return_value = tags_from(UPGRADE_TAG_NAMES)
        resolvers = ResolverSet(client=client)

        resolvers.resolve(_image("docker.io/org/demo:1.0.0"))
        resolvers.resolve(_image("docker.io/org/demo:1.1.0"))
        resolvers.resolve(_image("docker.io/org/other:1.1.0"))

        assert client.list_tags.call_count == 2
