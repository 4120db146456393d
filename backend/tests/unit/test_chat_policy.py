from datetime import datetime, timedelta, timezone

import pytest

from clubchat.domain.chat import policy
from clubchat.domain.chat.exceptions import AccessDenied, EditWindowExpired, NotAuthor, SelfConversation
from clubchat.domain.chat.models import ChatMessage, Identity, Role

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _message(sender_id: str = "alice", age: timedelta = timedelta(minutes=5)) -> ChatMessage:
    return ChatMessage(
        message_id="m-1",
        conversation_id="alice_bob",
        seq=1,
        sender_id=sender_id,
        body="hi",
        client_msg_id="c-1",
        created_at=NOW - age,
    )


@pytest.mark.parametrize(
    ("actor", "target", "allowed"),
    [
        (Role.ADMIN, Role.STAFF, True),
        (Role.ADMIN, Role.MEMBER, False),
        (Role.ADMIN, Role.ADMIN, False),
        (Role.STAFF, Role.MEMBER, True),
        (Role.STAFF, Role.STAFF, True),
        (Role.STAFF, Role.ADMIN, True),
        (Role.MEMBER, Role.STAFF, True),
        (Role.MEMBER, Role.ADMIN, True),
        (Role.MEMBER, Role.MEMBER, False),
    ],
)
def test_can_initiate_rule_table(actor, target, allowed):
    assert policy.can_initiate(actor, target) is allowed


def test_ensure_can_initiate_reports_reason():
    admin = Identity(id="a1", display_name="Ada", role=Role.ADMIN)
    member = Identity(id="m1", display_name="Mia", role=Role.MEMBER)
    with pytest.raises(AccessDenied) as exc_info:
        policy.ensure_can_initiate(admin, member)
    assert exc_info.value.reason == "admin_cannot_contact_member"
    with pytest.raises(SelfConversation):
        policy.ensure_can_initiate(admin, admin)


def test_contactable_filters_by_role_and_search():
    me = Identity(id="m1", display_name="Mia", role=Role.MEMBER)
    users = [
        me,
        Identity(id="m2", display_name="Max", role=Role.MEMBER),
        Identity(id="s1", display_name="sam", role=Role.STAFF),
        Identity(id="a1", display_name="Ada", role=Role.ADMIN),
    ]
    assert [user.id for user in policy.contactable(me, users)] == ["a1", "s1"]
    assert [user.id for user in policy.contactable(me, users, "SA")] == ["s1"]


def test_author_guard():
    policy.ensure_author(_message(), "alice")
    with pytest.raises(NotAuthor):
        policy.ensure_author(_message(), "bob")


def test_edit_window_boundary():
    policy.ensure_edit_window(_message(age=timedelta(seconds=3599)), NOW, 3600)
    with pytest.raises(EditWindowExpired):
        policy.ensure_edit_window(_message(age=timedelta(seconds=3600)), NOW, 3600)


def test_can_edit_is_non_raising():
    assert policy.can_edit(_message(), "alice", NOW, 3600)
    assert not policy.can_edit(_message(), "bob", NOW, 3600)
    assert not policy.can_edit(_message(age=timedelta(hours=2)), "alice", NOW, 3600)
