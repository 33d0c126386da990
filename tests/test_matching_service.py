"""Unit tests for MatchManager — mutual-like detection and match records."""
import pytest
from unittest.mock import AsyncMock, patch

from app.store.base import WriteOp
from app.utils.errors import InvalidUserIdsError, PersistenceFailure
from app.utils.keys import CONVERSATIONS_COLLECTION, USERS_COLLECTION, messages_path, user_matches_path


async def like(swipes, matches, swiper, swiped):
    await swipes.record_swipe(swiper, swiped, True)
    return await matches.process_like_and_check_match(swiper, swiped)


class TestProcessLike:
    """Mutual-like detection after a recorded like."""

    @pytest.mark.asyncio
    async def test_unreciprocated_like_is_no_match(self, swipes, matches, store):
        outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.status == "no_match"
        assert not outcome.is_match
        assert store.document_count(user_matches_path("alice")) == 0
        assert store.document_count(user_matches_path("bob")) == 0

    @pytest.mark.asyncio
    async def test_reciprocated_like_creates_both_records(self, swipes, matches, store, bob_profile):
        await store.set(USERS_COLLECTION, "bob", bob_profile)
        await like(swipes, matches, "alice", "bob")
        outcome = await like(swipes, matches, "bob", "alice")

        assert outcome.status == "matched"
        assert outcome.other_user_id == "alice"
        assert await matches.are_matched("alice", "bob")
        a_side = await store.get(user_matches_path("alice"), "bob")
        b_side = await store.get(user_matches_path("bob"), "alice")
        assert a_side["ownerId"] == "alice" and a_side["otherUserId"] == "bob"
        assert b_side["ownerId"] == "bob" and b_side["otherUserId"] == "alice"
        assert a_side["matchedAt"] == b_side["matchedAt"]

    @pytest.mark.asyncio
    async def test_matched_outcome_carries_other_profile(self, swipes, matches, store, bob_profile):
        await store.set(USERS_COLLECTION, "bob", bob_profile)
        await like(swipes, matches, "bob", "alice")
        outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.is_match
        assert outcome.other_profile["id"] == "bob"
        assert outcome.other_profile["preferences"]["budget"] == {"min": 800, "max": 1200}

    @pytest.mark.asyncio
    async def test_matched_without_profile(self, swipes, matches):
        await like(swipes, matches, "bob", "alice")
        outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.is_match
        assert outcome.other_profile is None

    @pytest.mark.asyncio
    async def test_pass_after_like_breaks_reciprocity(self, swipes, matches):
        await like(swipes, matches, "bob", "alice")
        await swipes.record_swipe("bob", "alice", False)
        outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.status == "no_match"

    @pytest.mark.asyncio
    async def test_repeat_like_on_matched_pair_writes_nothing(self, swipes, matches, store):
        await like(swipes, matches, "bob", "alice")
        await like(swipes, matches, "alice", "bob")
        with patch.object(store, "batch_write", AsyncMock()) as batch:
            outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.is_match
        batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_failure_reports_creation_failed(self, swipes, matches, store):
        await like(swipes, matches, "bob", "alice")
        await swipes.record_swipe("alice", "bob", True)
        with patch.object(store, "batch_write", AsyncMock(side_effect=PersistenceFailure("batch_write", "offline"))):
            outcome = await matches.process_like_and_check_match("alice", "bob")

        assert outcome.status == "match_creation_failed"
        assert "offline" in outcome.detail
        assert not await matches.are_matched("alice", "bob")
        # The like survives, so the next check finds the match.
        assert await swipes.has_liked("alice", "bob")
        retry = await matches.process_like_and_check_match("alice", "bob")
        assert retry.is_match

    @pytest.mark.asyncio
    async def test_reciprocal_read_failure_propagates(self, matches, swipes):
        with patch.object(swipes, "has_liked", AsyncMock(side_effect=PersistenceFailure("get"))):
            with pytest.raises(PersistenceFailure):
                await matches.process_like_and_check_match("alice", "bob")

    @pytest.mark.asyncio
    async def test_self_match_rejected(self, matches):
        with pytest.raises(InvalidUserIdsError):
            await matches.process_like_and_check_match("alice", "alice")


class TestCreateMatchPair:
    @pytest.mark.asyncio
    async def test_idempotent(self, matches):
        assert await matches.create_match_pair("alice", "bob") == 2
        assert await matches.create_match_pair("bob", "alice") == 0

    @pytest.mark.asyncio
    async def test_fills_only_missing_side(self, matches, store):
        await store.set(user_matches_path("alice"), "bob", {"ownerId": "alice", "otherUserId": "bob", "matchedAt": "2024-01-01T00:00:00Z"})
        assert await matches.create_match_pair("alice", "bob") == 1
        existing = await store.get(user_matches_path("alice"), "bob")
        assert existing["matchedAt"] == "2024-01-01T00:00:00Z"
        assert await matches.are_matched("alice", "bob")


class TestAreMatched:
    @pytest.mark.asyncio
    async def test_one_sided_record_is_not_a_match(self, matches, store):
        await matches.create_match_pair("alice", "bob")
        await store.delete(user_matches_path("bob"), "alice")
        assert not await matches.are_matched("alice", "bob")
        assert not await matches.are_matched("bob", "alice")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("a,b", [("", "bob"), ("alice", "alice")])
    async def test_degenerate_ids(self, matches, a, b):
        assert await matches.are_matched(a, b) is False


class TestRepair:
    @pytest.mark.asyncio
    async def test_removes_orphans_owned_by_caller_only(self, matches, store):
        await matches.create_match_pair("alice", "bob")
        await matches.create_match_pair("alice", "carol")
        await store.delete(user_matches_path("bob"), "alice")
        await store.set(user_matches_path("dave"), "alice", {"ownerId": "dave", "otherUserId": "alice", "matchedAt": "2024-01-01T00:00:00Z"})

        repaired = await matches.validate_and_repair_matches("alice")

        assert repaired == 1
        assert await matches.list_match_ids("alice") == ["carol"]
        # Other owners' records are left for their owners to repair.
        assert await store.get(user_matches_path("dave"), "alice") is not None

    @pytest.mark.asyncio
    async def test_consistent_state_needs_no_repair(self, matches):
        await matches.create_match_pair("alice", "bob")
        assert await matches.validate_and_repair_matches("alice") == 0
        assert await matches.validate_and_repair_matches("nobody") == 0


class TestListing:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, matches, store):
        for other, when in [("bob", "2024-01-01T00:00:00Z"), ("carol", "2024-03-01T00:00:00Z"), ("dave", "2024-02-01T00:00:00Z")]:
            await store.batch_write([
                WriteOp.set(user_matches_path("alice"), other, {"ownerId": "alice", "otherUserId": other, "matchedAt": when}),
                WriteOp.set(user_matches_path(other), "alice", {"ownerId": other, "otherUserId": "alice", "matchedAt": when}),
            ])
        assert await matches.list_match_ids("alice", most_recent_first=True) == ["carol", "dave", "bob"]

    @pytest.mark.asyncio
    async def test_matched_profiles_skip_missing_and_repair(self, matches, store, bob_profile):
        await store.set(USERS_COLLECTION, "bob", bob_profile)
        await matches.create_match_pair("alice", "bob")
        await matches.create_match_pair("alice", "ghost")
        await matches.create_match_pair("alice", "carol")
        await store.delete(user_matches_path("carol"), "alice")

        found, repaired = await matches.get_matched_profiles("alice")

        assert repaired == 1
        assert [p["id"] for p in found] == ["bob"]


class TestDeleteMatch:
    @pytest.mark.asyncio
    async def test_removes_both_sides_and_conversation(self, matches, store):
        await matches.create_match_pair("alice", "bob")
        await store.set(CONVERSATIONS_COLLECTION, "alice_bob", {"participants": ["alice", "bob"]})
        await store.set(messages_path("alice_bob"), "m1", {"senderId": "alice", "text": "hi"})

        await matches.delete_match("bob", "alice")

        assert not await matches.are_matched("alice", "bob")
        assert store.document_count(user_matches_path("alice")) == 0
        assert store.document_count(user_matches_path("bob")) == 0
        assert await store.get(CONVERSATIONS_COLLECTION, "alice_bob") is None
        assert store.document_count(messages_path("alice_bob")) == 0

    @pytest.mark.asyncio
    async def test_reciprocal_failure_is_tolerated_then_repaired(self, matches, store):
        await matches.create_match_pair("alice", "bob")
        original_delete = store.delete

        async def flaky_delete(collection, doc_id):
            if collection == user_matches_path("bob"):
                raise PersistenceFailure("delete", "timeout")
            await original_delete(collection, doc_id)

        with patch.object(store, "delete", side_effect=flaky_delete):
            await matches.delete_match("alice", "bob")

        assert not await matches.are_matched("alice", "bob")
        assert await matches.list_match_ids("bob") == ["alice"]
        assert await matches.validate_and_repair_matches("bob") == 1
        assert await matches.list_match_ids("bob") == []

    @pytest.mark.asyncio
    async def test_own_side_failure_propagates(self, matches, store):
        await matches.create_match_pair("alice", "bob")
        with patch.object(store, "delete", AsyncMock(side_effect=PersistenceFailure("delete"))):
            with pytest.raises(PersistenceFailure):
                await matches.delete_match("alice", "bob")
        assert await matches.are_matched("alice", "bob")

    @pytest.mark.asyncio
    async def test_rematch_after_unmatch(self, swipes, matches):
        await like(swipes, matches, "alice", "bob")
        await like(swipes, matches, "bob", "alice")
        await matches.delete_match("alice", "bob")

        # Both likes are still on record, so the next like re-matches.
        outcome = await like(swipes, matches, "alice", "bob")
        assert outcome.is_match
        assert await matches.are_matched("alice", "bob")
