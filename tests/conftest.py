"""Shared pytest fixtures for the roommate matching tests."""
import pytest

from app.services.compatibility_service import CompatibilityScorer
from app.services.conversation_service import ConversationGateway
from app.services.discovery_service import DiscoveryRanker
from app.services.matching_service import MatchManager
from app.services.profile_service import ProfileService
from app.services.swipe_service import SwipeLedger
from app.store.memory import InMemoryDocumentStore


def make_profile(
    budget=(500, 900),
    room_type="private",
    cleanliness=4,
    smoking=False,
    pets=False,
    location="Boston",
    gender="Female",
    complete=True,
    **lifestyle_extra,
):
    """Profile document in the stored camelCase shape."""
    lifestyle = {"cleanliness": cleanliness, "smoking": smoking, "pets": pets}
    lifestyle.update(lifestyle_extra)
    return {
        "basicInfo": {"firstName": "Test", "age": 24, "gender": gender},
        "preferences": {
            "budget": {"min": budget[0], "max": budget[1]},
            "roomType": room_type,
            "location": location,
        },
        "lifestyle": lifestyle,
        "photos": [],
        "isProfileComplete": complete,
    }


@pytest.fixture
def profile_factory():
    return make_profile


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def profiles(store):
    return ProfileService(store)


@pytest.fixture
def swipes(store):
    return SwipeLedger(store)


@pytest.fixture
def matches(store, swipes, profiles):
    return MatchManager(store, swipes, profiles)


@pytest.fixture
def scorer(store, profiles):
    return CompatibilityScorer(store, profiles)


@pytest.fixture
def ranker(profiles, matches, scorer):
    return DiscoveryRanker(profiles, matches, scorer)


@pytest.fixture
def gateway(store, matches, profiles):
    return ConversationGateway(store, matches, profiles)


@pytest.fixture
def alice_profile():
    """Boston, private room, tidy non-smoker."""
    return make_profile(budget=(500, 900), gender="Female")


@pytest.fixture
def bob_profile():
    """Overlapping budget and identical habits to Alice."""
    return make_profile(budget=(800, 1200), gender="Male")


@pytest.fixture
def carol_profile():
    """Poor fit for Alice on every factor except gender."""
    return make_profile(
        budget=(2000, 3000),
        room_type="shared",
        cleanliness=2,
        smoking=True,
        pets=False,
        location="Denver",
        gender="Female",
    )
