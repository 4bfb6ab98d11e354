from __future__ import annotations

import logging
import random
import re
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from backend.app.db import LocalStorage
from backend.app.errors import ProfileNotFoundError
from backend.app.models import Profile, ProfileUpdate
from backend.app.storage import Storage

logger = logging.getLogger(__name__)

ACTIVE_PROFILE_KEY = "active_profile_id"

AVATAR_COLORS = ["dc2626", "059669", "7c3aed", "ea580c", "0891b2", "be185d", "4338ca"]


def profile_login(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip().lower())


def avatar_url_for(name: str, color: Optional[str] = None) -> str:
    color = color or random.choice(AVATAR_COLORS)
    return f"https://ui-avatars.com/api/?name={quote(name)}&background={color}&color=fff&size=128"


class ProfileSession:
    """
    Known profiles plus the active one.

    The active profile id is remembered in LocalStorage under its own key,
    outside the relational snapshot.
    """

    def __init__(self, storage: Storage, local_storage: LocalStorage):
        self.storage = storage
        self.local_storage = local_storage
        self.user: Optional[Profile] = None
        self.profiles: List[Profile] = []
        self.needs_profile_creation = False
        # set once profiles have been loaded; a failed start leaves it False
        self.started = False

    def _remember(self, profile: Optional[Profile]) -> None:
        self.user = profile
        if profile is None:
            self.local_storage.remove_item(ACTIVE_PROFILE_KEY)
        else:
            self.local_storage.set_item(ACTIVE_PROFILE_KEY, profile.id.encode("utf-8"))

    def _remembered_id(self) -> Optional[str]:
        raw = self.local_storage.get_item(ACTIVE_PROFILE_KEY)
        return raw.decode("utf-8") if raw else None

    def _find(self, profile_id: str) -> Profile:
        for p in self.profiles:
            if p.id == profile_id:
                return p
        raise ProfileNotFoundError(profile_id)

    def start(self) -> None:
        self.storage.init()
        self.profiles = self.storage.get_all_profiles()

        if not self.profiles:
            self._remember(None)
            self.needs_profile_creation = True
            logger.info("No profiles yet, profile creation required")
            self.started = True
            return

        self.needs_profile_creation = False
        active_id = self._remembered_id()
        active = next((p for p in self.profiles if p.id == active_id), None)
        if active is None:
            # remembered profile is gone (or none was remembered)
            active = self.profiles[0]
        self._remember(active)
        self.started = True
        logger.info("Active profile: %s (%s)", active.name, active.id)

    def switch_profile(self, profile_id: str) -> Profile:
        profile = self._find(profile_id)
        self._remember(profile)
        return profile

    def create_profile(self, name: str, avatar_url: Optional[str] = None) -> Profile:
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a profile name")

        profile = Profile(
            id=f"profile_{uuid.uuid4().hex[:16]}",
            login=profile_login(name),
            avatar_url=avatar_url or avatar_url_for(name),
            name=name,
        )
        self.storage.set_profile(profile)
        self.profiles = self.storage.get_all_profiles()

        if self.user is None:
            self._remember(profile)
            self.needs_profile_creation = False
        logger.info("Created profile %s (%s)", profile.name, profile.id)
        return profile

    def update_profile(self, profile_id: str, updates: ProfileUpdate) -> Profile:
        self._find(profile_id)

        changes = updates.changes()
        if "name" in changes:
            changes["login"] = profile_login(changes["name"])

        self.storage.update_profile(profile_id, ProfileUpdate(**changes))
        self.profiles = self.storage.get_all_profiles()
        updated = self._find(profile_id)

        if self.user is not None and self.user.id == profile_id:
            self.user = updated
        return updated

    def delete_profile(self, profile_id: str) -> None:
        self._find(profile_id)

        if len(self.profiles) <= 1:
            self.storage.delete_profile(profile_id)
            self.profiles = []
            self._remember(None)
            self.needs_profile_creation = True
            logger.info("Deleted the last profile, profile creation required")
            return

        self.storage.delete_profile(profile_id)
        self.profiles = self.storage.get_all_profiles()

        if self.user is not None and self.user.id == profile_id:
            self._remember(self.profiles[0])

    def snapshot(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "profiles": self.profiles,
            "needs_profile_creation": self.needs_profile_creation,
        }
