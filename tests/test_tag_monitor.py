"""Tests for the Tag Integrity Monitor and the API tag source."""

import json
import tempfile
from pathlib import Path

import pytest

from forkwatch.errors import SnapshotError, TransientAPIError
from forkwatch.models.tags import TagClassification, TagSnapshot
from forkwatch.sync.snapshot_store import TagSnapshotStore
from forkwatch.sync.tag_monitor import TagIntegrityMonitor
from forkwatch.sync.tag_sources import ApiTagSource
from tests.conftest import FORK, UPSTREAM, sha

ABC = "abc123" + "0" * 34
DEF = "def456" + "0" * 34


def _monitor(client, **kwargs):
    return TagIntegrityMonitor(ApiTagSource(client), client, FORK, UPSTREAM, **kwargs)


# --- Tag Source Tests ---


def test_api_source_dereferences_annotated_and_nested_tags(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.add_tag(UPSTREAM, "v1.1.0", sha("c2"), tag_object=sha("t2"))
    # A tag of a tag: t3 -> t2 -> c2
    github.tag_objects[sha("t3")] = {"sha": sha("t3"), "object": {"sha": sha("t2"), "type": "tag"}}
    github.tag_refs[UPSTREAM.full_name].append(
        {"ref": "refs/tags/v1.1.0-signed", "object": {"sha": sha("t3"), "type": "tag"}}
    )

    tags = {t.name: t for t in ApiTagSource(client).list_tags(UPSTREAM)}

    assert tags["v1.0.0"].sha == sha("c1")
    assert not tags["v1.0.0"].annotated
    assert tags["v1.1.0"].sha == sha("c2")
    assert tags["v1.1.0"].object_sha == sha("t2")
    assert tags["v1.1.0-signed"].sha == sha("c2")


def test_api_source_skips_unresolvable_and_malformed_refs(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.tag_refs[UPSTREAM.full_name] += [
        {"ref": "refs/tags/dangling", "object": {"sha": sha("gone"), "type": "tag"}},
        {"ref": "refs/tags/tree-tag", "object": {"sha": sha("tree"), "type": "tree"}},
        {"object": {"sha": sha("c1")}},
    ]

    tags = {t.name: t for t in ApiTagSource(client).list_tags(UPSTREAM)}

    assert sorted(tags) == ["dangling", "tree-tag", "v1.0.0"]
    assert tags["v1.0.0"].sha == sha("c1")
    assert tags["dangling"].sha == ""
    assert tags["tree-tag"].sha == ""


def test_unresolvable_tag_is_skipped_not_deleted(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.add_tag(FORK, "v1.0.0", sha("c1"))
    github.tag_refs[UPSTREAM.full_name] = [
        {"ref": "refs/tags/v1.0.0", "object": {"sha": sha("gone"), "type": "tag"}}
    ]

    report = _monitor(client).run()

    assert report.skipped == ["v1.0.0"]
    assert not report.diff.has_changes
    assert github.issues == []


# --- Fork Baseline Tests ---


def test_mutation_raises_security_alert_with_both_ids(github, client):
    github.add_tag(UPSTREAM, "v2.0.0", DEF)
    github.add_tag(FORK, "v2.0.0", ABC)

    report = _monitor(client).run()

    assert report.has_mutations
    assert len(github.issues) == 1
    alert = github.issues[0]
    assert alert["title"].startswith("SECURITY:")
    assert ABC in alert["body"] and DEF in alert["body"]
    assert {label["name"] for label in alert["labels"]} >= {"security", "tag-mutation"}
    assert report.issues[TagClassification.MUTATED].number == alert["number"]


def test_same_commit_different_kind_is_unchanged(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"), tag_object=sha("t1"))
    github.add_tag(FORK, "v1.0.0", sha("c1"))

    report = _monitor(client).run()

    assert not report.diff.has_changes
    assert not github.issues


def test_added_and_deleted_get_separate_issues(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.add_tag(UPSTREAM, "v1.1.0", sha("c2"))
    github.add_tag(FORK, "v1.0.0", sha("c1"))
    github.add_tag(FORK, "v0.9.0", sha("c0"))

    report = _monitor(client).run()

    assert set(report.issues) == {TagClassification.ADDED, TagClassification.DELETED}
    titles = sorted(i["title"] for i in github.issues)
    assert titles[0].startswith("New upstream tags") and "v1.1.0" in titles[0]
    assert titles[1].startswith("Upstream tags removed") and "v0.9.0" in titles[1]


def test_repeated_run_refreshes_instead_of_duplicating(github, client):
    github.add_tag(UPSTREAM, "v2.0.0", DEF)
    github.add_tag(FORK, "v2.0.0", ABC)

    _monitor(client).run()
    second = _monitor(client).run()

    assert len(github.issues) == 1
    assert not second.issues[TagClassification.MUTATED].created


def test_ignore_patterns(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.add_tag(UPSTREAM, "nightly-2024-01-01", sha("c2"))
    github.add_tag(FORK, "v1.0.0", sha("c1"))
    github.add_tag(FORK, "fork-internal-1", sha("c3"))

    report = _monitor(client, ignore=["nightly-*", "fork-*"]).run()

    assert not report.diff.has_changes


def test_dry_run_raises_nothing(github, client):
    github.add_tag(UPSTREAM, "v2.0.0", DEF)
    github.add_tag(FORK, "v2.0.0", ABC)

    report = _monitor(client, dry_run=True).run()

    assert report.has_mutations
    assert github.writes == []


# --- Snapshot Baseline Tests ---


def test_snapshot_first_run_records_baseline(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))
    github.add_tag(UPSTREAM, "v1.1.0", sha("c2"))

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        report = _monitor(client, baseline="snapshot", store=store).run()

        assert report.first_run
        assert len(report.diff.added) == 2
        assert github.issues[0]["title"].startswith("Tag baseline recorded")
        saved = json.loads(store.path_for(UPSTREAM).read_text())
        assert saved["tags"] == {"v1.0.0": sha("c1"), "v1.1.0": sha("c2")}


def test_snapshot_detects_mutation_on_next_run(github, client):
    github.add_tag(UPSTREAM, "v2.0.0", ABC)

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        _monitor(client, baseline="snapshot", store=store).run()

        github.add_tag(UPSTREAM, "v2.0.0", DEF)
        report = _monitor(client, baseline="snapshot", store=store).run()

        assert not report.first_run
        assert [c.name for c in report.diff.mutated] == ["v2.0.0"]
        assert store.load(UPSTREAM).get("v2.0.0") == DEF


def test_snapshot_is_not_saved_on_dry_run(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        _monitor(client, baseline="snapshot", store=store, dry_run=True).run()
        assert store.load(UPSTREAM) is None


def test_unresolvable_tag_keeps_its_baseline_entry(github, client):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        _monitor(client, baseline="snapshot", store=store).run()

        github.tag_refs[UPSTREAM.full_name] = [
            {"ref": "refs/tags/v1.0.0", "object": {"sha": sha("gone"), "type": "tag"}}
        ]
        report = _monitor(client, baseline="snapshot", store=store).run()
        assert report.skipped == ["v1.0.0"]
        assert report.diff.deleted == []
        assert store.load(UPSTREAM).get("v1.0.0") == sha("c1")

        github.add_tag(UPSTREAM, "v1.0.0", sha("evil"))
        report = _monitor(client, baseline="snapshot", store=store).run()
        assert [(c.name, c.previous_sha, c.current_sha) for c in report.diff.mutated] == [
            ("v1.0.0", sha("c1"), sha("evil"))
        ]
        assert report.diff.added == []


def test_snapshot_is_kept_when_notification_fails(github, client):
    github.add_tag(UPSTREAM, "v2.0.0", ABC)

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        _monitor(client, baseline="snapshot", store=store).run()
        before = store.path_for(UPSTREAM).read_text()

        github.add_tag(UPSTREAM, "v2.0.0", DEF)
        github.fail[("POST", r"/issues$")] = 500
        with pytest.raises(TransientAPIError):
            _monitor(client, baseline="snapshot", store=store).run()

        assert store.path_for(UPSTREAM).read_text() == before
        assert store.load(UPSTREAM).get("v2.0.0") == ABC


@pytest.mark.parametrize("content", ["{not json", "[]", '{"tags": ["v1"]}', '{"tags": {"v1": 7}}'])
def test_corrupt_snapshot_fails_the_run(github, client, content):
    github.add_tag(UPSTREAM, "v1.0.0", sha("c1"))

    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        path = store.path_for(UPSTREAM)
        path.parent.mkdir(parents=True)
        path.write_text(content)

        with pytest.raises(SnapshotError) as excinfo:
            _monitor(client, baseline="snapshot", store=store).run()

        assert str(path) in str(excinfo.value)
        assert path.read_text() == content
        assert github.issues == []


def test_snapshot_save_replaces_atomically():
    with tempfile.TemporaryDirectory() as tmp:
        store = TagSnapshotStore(tmp)
        path = store.save(UPSTREAM, TagSnapshot(repository="u/w", tags={"v1": sha("c1")}))
        assert store.load(UPSTREAM).get("v1") == sha("c1")
        assert not Path(f"{path}.tmp").exists()


def test_snapshot_baseline_requires_store(client):
    with pytest.raises(ValueError):
        _monitor(client, baseline="snapshot")
