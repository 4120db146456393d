from datetime import datetime, timedelta, timezone

import pytest

from clubchat.domain.chat.exceptions import NotParticipant, SelfConversation
from clubchat.domain.chat.models import (
    ConversationKey,
    Identity,
    InboxEntry,
    Role,
    matches_search,
    sort_inbox,
    validate_inbox_fields,
)


def test_conversation_id_is_symmetric():
    first = ConversationKey.from_participants("bob", "alice")
    second = ConversationKey.from_participants("alice", "bob")
    assert first == second
    assert first.conversation_id == "alice_bob"
    assert first.peer_of("alice") == "bob"


def test_self_conversation_rejected():
    with pytest.raises(SelfConversation):
        ConversationKey.from_participants("alice", "alice")


def test_resolve_handles_separator_inside_ids():
    key = ConversationKey.from_participants("team_lead", "zoe")
    assert key.conversation_id == "team_lead_zoe"
    assert ConversationKey.resolve("team_lead_zoe", "zoe").peer_of("zoe") == "team_lead"
    assert ConversationKey.resolve("team_lead_zoe", "team_lead").peer_of("team_lead") == "zoe"


def test_resolve_rejects_outsiders():
    with pytest.raises(NotParticipant):
        ConversationKey.resolve("alice_bob", "carol")
    with pytest.raises(NotParticipant):
        ConversationKey.from_participants("alice", "bob").peer_of("carol")


def test_role_parse_defaults_to_member():
    assert Role.parse("ADMIN") is Role.ADMIN
    assert Role.parse(" staff ") is Role.STAFF
    assert Role.parse(None) is Role.MEMBER
    assert Role.parse("owner") is Role.MEMBER


def test_identity_name_falls_back():
    assert Identity(id="x", display_name="").name == "Unknown User"


def test_sort_inbox_puts_favorites_first_then_recent():
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    old_fav = InboxEntry(owner_id="o", peer_id="a", conversation_id="a_o", updated_at=base, is_favorite=True)
    recent = InboxEntry(owner_id="o", peer_id="b", conversation_id="b_o", updated_at=base + timedelta(hours=2))
    older = InboxEntry(owner_id="o", peer_id="c", conversation_id="c_o", updated_at=base + timedelta(hours=1))
    never = InboxEntry(owner_id="o", peer_id="d", conversation_id="d_o")
    ordered = sort_inbox([never, older, recent, old_fav])
    assert [entry.peer_id for entry in ordered] == ["a", "b", "c", "d"]


def test_matches_search_is_case_insensitive():
    assert matches_search("Sam Staff", "sam")
    assert matches_search("Sam Staff", "  ")
    assert not matches_search("Sam Staff", "ada")
    assert not matches_search(None, "x")


def test_validate_inbox_fields():
    with pytest.raises(ValueError):
        validate_inbox_fields({"bogus": 1})
    with pytest.raises(ValueError):
        validate_inbox_fields({"unread_count": -1})
    assert validate_inbox_fields({"unread_count": 0}) == {"unread_count": 0}
