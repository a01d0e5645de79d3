"""Tests for release and repository metadata persistence."""

from __future__ import annotations

from devpulse.models import RepoMeta
from devpulse.repository import get_repo_metas, release_from_item, save_releases, save_repo_meta
from devpulse.store import Store

from conftest import ORG, REPO


class TestReleases:
    def test_release_from_item(self) -> None:
        release = release_from_item(
            ORG,
            REPO,
            {
                "tag_name": "v1.0.0",
                "name": None,
                "published_at": "2025-01-01T00:00:00Z",
                "prerelease": True,
                "assets": [{"name": "a.whl", "size": 10, "download_count": 4}],
            },
        )
        assert release.tag == "v1.0.0"
        assert release.name == ""
        assert release.prerelease is True
        assert release.assets[0].download_count == 4
        assert release.assets[0].content_type == ""

    def test_upsert_updates_download_counts(self, store: Store) -> None:
        item = {
            "tag_name": "v1.0.0",
            "published_at": "2025-01-01T00:00:00Z",
            "assets": [{"name": "a.whl", "download_count": 4}],
        }
        with store.transaction() as conn:
            save_releases(conn, [release_from_item(ORG, REPO, item)])
        item["assets"] = [{"name": "a.whl", "download_count": 9}]
        with store.transaction() as conn:
            save_releases(conn, [release_from_item(ORG, REPO, item)])

        assert store.scalar("SELECT COUNT(*) FROM release") == 1
        assert store.scalar("SELECT download_count FROM release_asset") == 9


class TestRepoMeta:
    def test_save_and_filter(self, store: Store) -> None:
        save_repo_meta(store, RepoMeta(org=ORG, repo=REPO, stars=3, archived=True))
        save_repo_meta(store, RepoMeta(org=ORG, repo="gadget", stars=1))
        save_repo_meta(store, RepoMeta(org=ORG, repo=REPO, stars=5, archived=True))

        metas = get_repo_metas(store)
        assert [m.repo for m in metas] == ["gadget", REPO]
        widget = get_repo_metas(store, ORG, REPO)[0]
        assert widget.stars == 5
        assert widget.archived is True
