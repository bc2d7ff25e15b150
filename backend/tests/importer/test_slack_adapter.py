"""Tests for the Slack export adapter (JSON object and zip archive)."""

import io
import json
import zipfile

import pytest

from tests.fixtures import THREAD_TS, make_slack_export, make_slack_zip, slack_message


def _parse(payload):
    from chatport.importer.parsers.slack import SlackAdapter

    return SlackAdapter().parse(payload)


class TestSlackUsers:

    def test_user_fields(self):
        users = {u.source_id: u for u in _parse(make_slack_export()).users}
        alice = users["U1"]
        assert alice.handle == "alice"
        assert alice.display_name == "Alice"
        assert alice.email == "alice@example.com"
        assert alice.avatar_url == "https://avatars.slack-edge.com/U1.png"
        assert alice.metadata == {"team_id": "T1"}

    def test_bots_and_slackbot(self):
        from tests.fixtures import slack_user

        payload = make_slack_export()
        payload["users"].append(slack_user("USLACKBOT", "slackbot"))
        users = {u.source_id: u for u in _parse(payload).users}
        assert users["U3"].is_bot
        assert users["USLACKBOT"].is_bot
        assert not users["U1"].is_bot

    def test_deleted_users(self):
        from tests.fixtures import slack_user

        payload = make_slack_export()
        payload["users"].append(slack_user("U9", "leaver", deleted=True))
        users = {u.source_id: u for u in _parse(payload).users}
        assert users["U9"].is_deleted


class TestSlackChannels:

    def test_public_and_private_channels(self):
        channels = {c.source_id: c for c in _parse(make_slack_export()).channels}
        assert set(channels) == {"C1", "C2", "G1"}
        assert not channels["C1"].is_private
        assert channels["G1"].is_private
        assert channels["C1"].description == "All about general"
        assert channels["C1"].creator_id == "U1"
        assert channels["C1"].member_ids == ["U1", "U2"]

    def test_archived_flag(self):
        payload = make_slack_export()
        payload["channels"][1]["is_archived"] = True
        channels = {c.source_id: c for c in _parse(payload).channels}
        assert channels["C2"].archived

    def test_dm_members_fall_back_to_user(self):
        payload = make_slack_export()
        payload["dms"] = [{"id": "D1", "created": 1700000000, "user": "U2"}]
        channels = {c.source_id: c for c in _parse(payload).channels}
        assert channels["D1"].is_private
        assert channels["D1"].member_ids == ["U2"]


class TestSlackMessages:

    def test_message_ids_are_channel_scoped(self):
        messages = _parse(make_slack_export()).messages
        ids = [m.source_id for m in messages]
        assert f"C1:{THREAD_TS}" in ids
        assert "C2:1709298000.000100" in ids
        assert all(m.channel_id in {"C1", "C2", "G1"} for m in messages)

    def test_thread_structure(self):
        messages = {m.source_id: m for m in _parse(make_slack_export()).messages}
        root = messages[f"C1:{THREAD_TS}"]
        reply = messages["C1:1709294460.000200"]
        orphan = messages["C1:1709294520.000300"]
        assert not root.is_reply
        assert reply.thread_parent_id == f"C1:{THREAD_TS}"
        assert orphan.thread_parent_id == "C1:1709000000.000000"

    def test_join_notices_are_system(self):
        messages = {m.source_id: m for m in _parse(make_slack_export()).messages}
        assert messages["C1:1709294300.000050"].is_system
        assert not messages[f"C1:{THREAD_TS}"].is_system

    def test_bot_messages_are_content(self):
        payload = make_slack_export()
        payload["messages"]["general"].append({
            "type": "message", "subtype": "bot_message", "bot_id": "B1",
            "text": "Build passed", "ts": "1709299000.000100",
        })
        messages = {m.source_id: m for m in _parse(payload).messages}
        msg = messages["C1:1709299000.000100"]
        assert not msg.is_system
        assert msg.author_id == "B1"

    def test_files_unfurls_reactions_and_pins(self):
        messages = {m.source_id: m for m in _parse(make_slack_export()).messages}
        shared = messages["C2:1709298000.000100"]
        assert shared.attachments[0].filename == "report.pdf"
        assert shared.attachments[0].mime_type == "application/pdf"
        assert shared.attachments[0].size_bytes == 4096
        assert shared.embeds[0].title == "Example"
        assert shared.embeds[0].description == "An example link"
        assert shared.embeds[0].url == "https://example.com"

        reply = messages["C1:1709294460.000200"]
        assert reply.reactions[0].emoji == "tada"
        assert reply.reactions[0].user_ids == ["U1"]

        assert messages["G1:1709301600.000100"].pinned

    def test_timestamps_from_ts(self):
        messages = {m.source_id: m for m in _parse(make_slack_export()).messages}
        ts = messages[f"C1:{THREAD_TS}"].timestamp
        assert ts.isoformat().startswith("2024-03-01T12:00:00")

    def test_unknown_folder_warns(self):
        payload = make_slack_export()
        payload["messages"]["lost-channel"] = [slack_message("U1", "hello?", "1709300000.000100")]
        export = _parse(payload)
        assert any("lost-channel" in w for w in export.warnings)
        assert export.messages[-1].channel_id == "lost-channel"


class TestSlackZip:

    def test_zip_matches_json_form(self):
        from_json = _parse(make_slack_export())
        from_zip = _parse(make_slack_zip(make_slack_export()))
        assert [u.source_id for u in from_zip.users] == [u.source_id for u in from_json.users]
        assert {c.source_id for c in from_zip.channels} == {c.source_id for c in from_json.channels}
        assert sorted(m.source_id for m in from_zip.messages) == sorted(
            m.source_id for m in from_json.messages
        )

    def test_nested_top_folder(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("export/users.json", json.dumps(make_slack_export()["users"]))
            zf.writestr("export/channels.json", json.dumps(make_slack_export()["channels"]))
            zf.writestr(
                "export/general/2024-03-01.json",
                json.dumps([slack_message("U1", "nested", "1709294400.000100")]),
            )
        export = _parse(buf.getvalue())
        assert len(export.users) == 3
        assert export.messages[0].source_id == "C1:1709294400.000100"

    def test_unreadable_day_file_is_skipped_with_warning(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("users.json", json.dumps(make_slack_export()["users"]))
            zf.writestr("channels.json", json.dumps(make_slack_export()["channels"]))
            zf.writestr("general/2024-03-01.json", "{truncated")
        export = _parse(buf.getvalue())
        assert export.messages == []
        assert any("general/2024-03-01.json" in w for w in export.warnings)

    def test_corrupt_archive(self):
        from chatport.importer.errors import ExportValidationError

        with pytest.raises(ExportValidationError, match="archive"):
            _parse(b"PK\x03\x04 definitely not a zip")


class TestSlackValidation:

    def test_requires_channels_or_users(self):
        from chatport.importer.errors import ExportValidationError

        with pytest.raises(ExportValidationError, match="Not a Slack export"):
            _parse({"messages": {}})

    def test_rejects_arrays(self):
        from chatport.importer.errors import ExportValidationError

        with pytest.raises(ExportValidationError):
            _parse([{"id": "C1"}])

    def test_messages_must_be_keyed_by_folder(self):
        from chatport.importer.errors import ExportValidationError

        payload = make_slack_export()
        payload["messages"] = []
        with pytest.raises(ExportValidationError, match="messages"):
            _parse(payload)
