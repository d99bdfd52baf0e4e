"""Tests for the activity log."""

import json

from themesync.activity import (
    MAX_ENTRIES,
    ActivityLog,
    LogEntry,
    Source,
    Status,
    sanitize_metadata,
    sanitize_text,
)


class TestSanitize:
    """Tests for the sanitising helpers."""

    def test_text_strips_tags_and_controls(self):
        assert sanitize_text("<b>Deploy</b>\x00 done\n\tnow") == "Deploy done now"

    def test_metadata_scalars_kept(self):
        meta = {"Sha": "abc", "count": 3, "ratio": 0.5, "ok": True}
        assert sanitize_metadata(meta) == {"sha": "abc", "count": 3, "ratio": 0.5, "ok": True}

    def test_metadata_drops_unsupported_values(self):
        meta = {"items": [1, 2], "obj": object(), "none": None, "fine": "yes"}
        assert sanitize_metadata(meta) == {"fine": "yes"}

    def test_metadata_depth_limited(self):
        meta = {"outer": {"inner": {"deep": 1}, "value": 2}}
        assert sanitize_metadata(meta) == {"outer": {"value": 2}}

    def test_metadata_keys_sanitised(self):
        assert sanitize_metadata({"Bad Key!": 1, "": 2, "ok_key-2": 3}) == {
            "badkey": 1,
            "ok_key-2": 3,
        }

    def test_non_mapping(self):
        assert sanitize_metadata(["a"]) == {}


class TestActivityLog:
    """Tests for ActivityLog."""

    def test_newest_first(self, activity):
        activity.record("first")
        activity.record("second")
        assert [e.message for e in activity.all()] == ["second", "first"]

    def test_capped(self, activity):
        for i in range(MAX_ENTRIES + 15):
            activity.record(f"entry {i}")
        entries = activity.all()
        assert len(entries) == MAX_ENTRIES
        assert entries[0].message == f"entry {MAX_ENTRIES + 14}"
        assert entries[-1].message == "entry 15"

    def test_recent(self, activity):
        for i in range(5):
            activity.record(f"entry {i}")
        assert [e.message for e in activity.recent(2)] == ["entry 4", "entry 3"]
        assert activity.recent(0) == []

    def test_invalid_enums_coerced(self, activity):
        entry = activity.record("x", status="weird", source="elsewhere")
        assert entry.status is Status.INFO
        assert entry.source is Source.SYSTEM

    def test_entry_shape(self, activity):
        entry = activity.record("hello", Status.SUCCESS, Source.MANUAL, {"k": "v"})
        data = entry.to_dict()
        assert data["id"].startswith("log_")
        assert data["status"] == "success"
        assert data["source"] == "manual"
        assert data["metadata"] == {"k": "v"}
        assert LogEntry.from_dict(data) == entry

    def test_clear(self, activity):
        activity.record("x")
        activity.clear()
        assert activity.all() == []

    def test_purge(self, activity, tmp_path):
        activity.record("x")
        activity.purge()
        assert not (tmp_path / "data" / "activity.json").exists()

    def test_corrupt_file_treated_as_empty(self, activity, tmp_path):
        path = tmp_path / "data" / "activity.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("garbage", encoding="utf-8")
        assert activity.all() == []
        activity.record("recovered")
        assert len(json.loads(path.read_text(encoding="utf-8"))) == 1

    # ------------------------------------------------------------------
    # Canned recorders
    # ------------------------------------------------------------------

    def test_update_success(self, activity):
        entry = activity.record_update_success("abc1234", Source.WEBHOOK, {"commit_sha": "abc"})
        assert entry.message == "Theme updated successfully to abc1234"
        assert entry.status is Status.SUCCESS
        assert entry.source is Source.WEBHOOK
        assert entry.metadata == {"commit_sha": "abc", "version": "abc1234"}

    def test_update_failure(self, activity):
        entry = activity.record_update_failure("boom")
        assert entry.message == "Theme update failed: boom"
        assert entry.status is Status.ERROR
        assert entry.metadata["error"] == "boom"

    def test_snapshot_created(self, activity):
        entry = activity.record_snapshot_created("acme_2026", "/snaps/acme_2026")
        assert entry.source is Source.SYSTEM
        assert entry.metadata == {"snapshot_name": "acme_2026", "snapshot_path": "/snaps/acme_2026"}

    def test_restore_success(self, activity):
        entry = activity.record_restore_success("acme_2026")
        assert entry.message == "Theme restored from snapshot: acme_2026"
        assert entry.status is Status.SUCCESS
