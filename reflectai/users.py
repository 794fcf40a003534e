"""
Current-user resolution and user profile persistence.
"""

import logging
from typing import Optional

from .errors import InvalidArgument
from .layout import mood_counts_path, profile_path
from .models import MoodCounts, User, UserProfile
from .tree import TreeBackend

logger = logging.getLogger(__name__)


class UserIdProvider:
    """Resolves the id of the authenticated user, or None when nobody is signed in."""

    def current_user_id(self) -> Optional[str]:
        raise NotImplementedError


class StaticUserIdProvider(UserIdProvider):
    def __init__(self, user_id: Optional[str]):
        self._user_id = user_id or None

    def current_user_id(self) -> Optional[str]:
        return self._user_id


class UserRepository:
    def __init__(self, backend: TreeBackend):
        self.backend = backend

    async def get_user(self, user_id: str) -> Optional[User]:
        """Fetch a user's profile and mood counts. Returns None if the profile doesn't exist."""
        path = profile_path(user_id)
        raw = await self.backend.get(path)
        if raw is None:
            return None
        profile = UserProfile.from_record(raw, user_id, path=path)
        counts_path = mood_counts_path(user_id)
        counts = MoodCounts.from_record(await self.backend.get(counts_path), path=counts_path)
        return User(profile=profile, mood_counts=counts)

    async def ensure_user(self, user_id: str, display_name: str = "", email: str = "") -> UserProfile:
        """Fetch the user's profile, creating it if it doesn't exist."""
        if not user_id:
            raise InvalidArgument("User ID cannot be empty")
        path = profile_path(user_id)
        raw = await self.backend.get(path)
        if raw is not None:
            return UserProfile.from_record(raw, user_id, path=path)
        logger.info(f"User with ID {user_id} not found. Creating a new profile.")
        profile = UserProfile(id=user_id, display_name=display_name, email=email)
        await self.backend.set(path, profile.to_record())
        return profile

    async def update_profile(self, profile: UserProfile) -> None:
        if not profile.id:
            raise InvalidArgument("User ID cannot be empty")
        await self.backend.set(profile_path(profile.id), profile.to_record())
