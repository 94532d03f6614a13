"""
Tests for guarded user profile creation and edits.
"""

import pytest

from src.core.errors import Conflict, Locked, NotFound, Unauthorized, ValidationFailed
from src.core.events import EDIT_SUCCESS, lock_events
from src.core.locks import lock_manager
from src.core.profiles import create_profile, get_profile, update_profile


class TestCreateProfile:

    def test_create(self):
        profile = create_profile("admin1", {"id": "f9", "email": "f9@example.edu", "department": "X"})

        assert profile.role == "faculty"
        assert profile.updated_by == "admin1"
        assert get_profile("f9").email == "f9@example.edu"

    @pytest.mark.parametrize("data", [
        {"email": "x@example.edu"},
        {"id": "f9"},
        {"id": "f9", "email": "f9@example.edu", "role": "dean"},
    ])
    def test_create_validation(self, data):
        with pytest.raises(ValidationFailed):
            create_profile("admin1", data)

    def test_duplicate_id(self, user_factory):
        user_factory("f9")
        with pytest.raises(ValidationFailed, match="already exists"):
            create_profile("admin1", {"id": "f9", "email": "other@example.edu"})

    def test_missing_profile(self):
        with pytest.raises(NotFound):
            get_profile("nobody")


class TestUpdateProfile:

    def test_self_edit(self, user_factory):
        user = user_factory("f1", department="X")

        updated = update_profile("f1", "f1", {"last_name": "Ng"}, user.updated_at)

        assert updated.last_name == "Ng"
        assert updated.updated_at > user.updated_at
        assert updated.updated_by == "f1"

    def test_edit_publishes_success_event(self, user_factory):
        user = user_factory("f1")
        received = []
        lock_events.subscribe("f1", received.append)

        update_profile("admin1", "f1", {"department": "Y"}, user.updated_at, actor_role="admin")

        assert [event["type"] for event in received] == [EDIT_SUCCESS]

    def test_stale_version(self, user_factory):
        user = user_factory("f1")
        update_profile("admin1", "f1", {"department": "Y"}, user.updated_at, actor_role="admin")

        with pytest.raises(Conflict):
            update_profile("admin2", "f1", {"department": "Z"}, user.updated_at, actor_role="admin")
        assert get_profile("f1").department == "Y"

    def test_foreign_lock_blocks_edit(self, user_factory):
        user = user_factory("f1")
        lock_manager.acquire("f1", "admin1")

        with pytest.raises(Locked) as exc_info:
            update_profile("admin2", "f1", {"department": "Z"}, user.updated_at, actor_role="admin")
        assert exc_info.value.holder == "admin1"

        update_profile("admin1", "f1", {"department": "Z"}, user.updated_at, actor_role="admin")
        lock_manager.release("f1", "admin1")

    def test_only_self_or_admin(self, user_factory):
        user = user_factory("f1")
        user_factory("f2")
        with pytest.raises(Unauthorized):
            update_profile("f2", "f1", {"last_name": "X"}, user.updated_at)

    def test_only_admin_changes_role(self, user_factory):
        user = user_factory("f1")
        with pytest.raises(Unauthorized):
            update_profile("f1", "f1", {"role": "admin"}, user.updated_at)

        updated = update_profile("admin1", "f1", {"role": "secretary", "is_active": False},
                                 user.updated_at, actor_role="admin")
        assert updated.role == "secretary"
        assert updated.is_active is False

    def test_unknown_field(self, user_factory):
        user = user_factory("f1")
        with pytest.raises(ValidationFailed):
            update_profile("f1", "f1", {"id": "f100"}, user.updated_at)

