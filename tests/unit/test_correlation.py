"""Unit tests for matchers and the correlation store."""

from __future__ import annotations

import pytest

from kubedump.controller.matcher import (
    LabelMatcher,
    LabelSelectorMatcher,
    NullMatcher,
    VolumeMatcher,
    matcher_for,
)
from kubedump.controller.store import CorrelationStore
from kubedump.errors import ResourceNotFoundError
from kubedump.models.resource import ResourceKind

from ..conftest import (
    as_resource,
    make_config_map,
    make_deployment,
    make_job,
    make_pod,
    make_replica_set,
    make_secret,
    make_service,
    owner_reference,
)

# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


class TestLabelMatcher:
    def test_empty_labels_match_everything(self) -> None:
        assert LabelMatcher().matches(as_resource(make_pod()))

    def test_candidate_must_contain_every_label(self) -> None:
        matcher = LabelMatcher(labels={"app": "web", "tier": "front"})
        assert matcher.matches(as_resource(make_pod(labels={"app": "web", "tier": "front", "extra": "x"})))
        assert not matcher.matches(as_resource(make_pod(labels={"app": "web"})))
        assert not matcher.matches(as_resource(make_pod(labels={"app": "web", "tier": "back"})))

    def test_kind_restriction(self) -> None:
        matcher = LabelMatcher(labels={"app": "web"}, kinds=frozenset({ResourceKind.POD}))
        assert matcher.matches(as_resource(make_pod(labels={"app": "web"})))
        assert not matcher.matches(as_resource(make_replica_set(labels={"app": "web"})))


class TestLabelSelectorMatcher:
    def test_match_labels(self) -> None:
        matcher = LabelSelectorMatcher.from_selector({"matchLabels": {"job-name": "j"}})
        assert matcher.matches(as_resource(make_pod(labels={"job-name": "j"})))
        assert not matcher.matches(as_resource(make_pod(labels={"job-name": "k"})))

    @pytest.mark.parametrize(
        ("expression", "labels", "expected"),
        [
            ({"key": "env", "operator": "In", "values": ["dev", "qa"]}, {"env": "qa"}, True),
            ({"key": "env", "operator": "In", "values": ["dev", "qa"]}, {"env": "prod"}, False),
            ({"key": "env", "operator": "NotIn", "values": ["prod"]}, {"env": "dev"}, True),
            ({"key": "env", "operator": "NotIn", "values": ["prod"]}, {}, True),
            ({"key": "env", "operator": "NotIn", "values": ["prod"]}, {"env": "prod"}, False),
            ({"key": "env", "operator": "Exists"}, {"env": ""}, True),
            ({"key": "env", "operator": "Exists"}, {}, False),
            ({"key": "env", "operator": "DoesNotExist"}, {}, True),
            ({"key": "env", "operator": "DoesNotExist"}, {"env": "x"}, False),
            ({"key": "env", "operator": "Bogus"}, {"env": "x"}, False),
        ],
    )
    def test_match_expressions(self, expression: dict, labels: dict[str, str], expected: bool) -> None:
        matcher = LabelSelectorMatcher.from_selector({"matchExpressions": [expression]})
        assert matcher.matches(as_resource(make_pod(labels=labels))) is expected


class TestVolumeMatcher:
    def test_matches_mounted_config_maps_and_secrets(self) -> None:
        pod = as_resource(make_pod(config_maps=("cm",), secrets=("s",)))
        matcher = matcher_for(pod)
        assert isinstance(matcher, VolumeMatcher)
        assert matcher.matches(as_resource(make_config_map("cm")))
        assert matcher.matches(as_resource(make_secret("s")))
        assert not matcher.matches(as_resource(make_secret("cm")))
        assert not matcher.matches(as_resource(make_config_map("other")))

    def test_projected_sources_count(self) -> None:
        raw = make_pod()
        raw["spec"]["volumes"] = [
            {"name": "projected", "projected": {"sources": [{"configMap": {"name": "cm"}}, {"secret": {"name": "s"}}]}}
        ]
        matcher = matcher_for(as_resource(raw))
        assert matcher is not None
        assert matcher.matches(as_resource(make_config_map("cm")))
        assert matcher.matches(as_resource(make_secret("s")))


class TestMatcherFor:
    def test_service_without_selector_has_no_matcher(self) -> None:
        raw = make_service()
        raw["spec"] = {}
        assert matcher_for(as_resource(raw)) is None

    def test_service_selects_pods_only(self) -> None:
        matcher = matcher_for(as_resource(make_service(selector={"app": "web"})))
        assert isinstance(matcher, LabelMatcher)
        assert matcher.matches(as_resource(make_pod(labels={"app": "web"})))
        assert not matcher.matches(as_resource(make_replica_set(labels={"app": "web"})))

    def test_deployment_selects_replica_sets_and_pods(self) -> None:
        matcher = matcher_for(as_resource(make_deployment(match_labels={"app": "web"})))
        assert matcher is not None
        assert matcher.matches(as_resource(make_replica_set(labels={"app": "web"})))
        assert matcher.matches(as_resource(make_pod(labels={"app": "web"})))
        assert not matcher.matches(as_resource(make_service()))

    def test_job_without_selector_matches_nothing(self) -> None:
        raw = make_job()
        raw["spec"] = {}
        matcher = matcher_for(as_resource(raw))
        assert isinstance(matcher, NullMatcher)
        assert not matcher.matches(as_resource(make_pod(labels={"job-name": "test-job"})))

    @pytest.mark.parametrize("factory", [make_config_map, make_secret])
    def test_config_maps_and_secrets_get_null_matcher(self, factory) -> None:
        assert isinstance(matcher_for(as_resource(factory())), NullMatcher)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def _register(store: CorrelationStore, raw: dict):
    resource = as_resource(raw)
    matcher = matcher_for(resource)
    assert matcher is not None
    store.add_resource(resource, matcher)
    return resource


class TestCorrelationStore:
    def test_get_resources_finds_selecting_owner(self) -> None:
        store = CorrelationStore()
        job = _register(store, make_job("j"))
        pod = _register(store, make_pod("p", labels={"job-name": "j"}))

        assert store.get_resources(pod) == [job]
        assert store.get_dependents(job) == [pod]

    def test_lookup_is_limited_to_namespace(self) -> None:
        store = CorrelationStore()
        _register(store, make_job("j", namespace="other"))
        pod = _register(store, make_pod("p", labels={"job-name": "j"}))

        assert store.get_resources(pod) == []

    def test_resource_never_matches_itself(self) -> None:
        store = CorrelationStore()
        raw = make_service(selector={"app": "web"})
        raw["metadata"]["labels"] = {"app": "web"}
        service = as_resource(raw)
        store.add_resource(service, LabelMatcher(labels={"app": "web"}))

        assert store.get_resources(service) == []
        assert store.get_dependents(service) == []

    def test_owner_references_correlate_without_matcher(self) -> None:
        store = CorrelationStore()
        rs_raw = make_replica_set("rs", match_labels={"never": "matches"})
        rs = _register(store, rs_raw)
        pod = _register(store, make_pod("p", owners=[owner_reference(rs_raw)]))

        assert store.get_resources(pod) == [rs]
        assert store.get_dependents(rs) == [pod]

    def test_pod_is_owner_of_its_volumes(self) -> None:
        store = CorrelationStore()
        pod = _register(store, make_pod("p", config_maps=("cm",)))
        config_map = _register(store, make_config_map("cm"))

        assert store.get_resources(config_map) == [pod]
        assert store.get_dependents(pod) == [config_map]

    def test_last_write_wins(self) -> None:
        store = CorrelationStore()
        raw = make_job("j", match_labels={"v": "1"})
        _register(store, raw)
        raw["spec"]["selector"]["matchLabels"] = {"v": "2"}
        job = _register(store, raw)

        assert len(store) == 1
        assert store.get(job) == job
        pod = as_resource(make_pod("p", labels={"v": "2"}))
        assert store.get_resources(pod) == [job]

    def test_remove_resource(self) -> None:
        store = CorrelationStore()
        job = _register(store, make_job("j"))
        pod = _register(store, make_pod("p", labels={"job-name": "j"}))
        store.add_edge(job, pod)
        store.claim(job)

        store.remove_resource(job)

        assert job not in store
        assert store.get_resources(pod) == []
        assert store.owners_of(pod) == set()
        assert not store.is_claimed(job)

    def test_remove_missing_resource_raises(self) -> None:
        store = CorrelationStore()
        with pytest.raises(ResourceNotFoundError):
            store.remove_resource(as_resource(make_pod()))

    def test_remove_unregistered_resource_drops_claim_and_edges(self) -> None:
        # A Service without a selector is claimed and linked but never registered.
        store = CorrelationStore()
        service = as_resource(make_service("s"))
        pod = as_resource(make_pod("p"))
        store.claim(service)
        store.add_edge(service, pod)

        with pytest.raises(ResourceNotFoundError):
            store.remove_resource(service)

        assert not store.is_claimed(service)
        assert store.owners_of(pod) == set()

    def test_edges_are_recorded_once(self) -> None:
        store = CorrelationStore()
        job = as_resource(make_job("j"))
        pod = as_resource(make_pod("p"))

        assert store.add_edge(job, pod) is True
        assert store.add_edge(job, pod) is False
        assert store.dependents_of(job) == {pod.uid}
        assert store.owners_of(pod) == {job.uid}

    def test_claim_reports_first_claim_only(self) -> None:
        store = CorrelationStore()
        pod = as_resource(make_pod())

        assert not store.is_claimed(pod)
        assert store.claim(pod) is True
        assert store.claim(pod) is False
        assert store.is_claimed(pod)
