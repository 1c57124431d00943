"""Identity lookups: display names, current user, administrator checks."""

from __future__ import annotations

from typing import Optional, Sequence

from courtslots.domain.models import UserIdentity
from courtslots.repository.data_repository import DataRepository
from courtslots.utils.config import Settings, get_settings


class IdentityError(Exception):
    """Base identity failure."""


class UnknownUserError(IdentityError):
    """Raised when the caller cannot be matched to a known user."""


class PermissionDeniedError(IdentityError):
    """Raised when a non-administrator attempts an administrator operation."""


class IdentityService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def current_user(self, user_id: Optional[str]) -> UserIdentity:
        if not user_id or not user_id.strip():
            raise UnknownUserError(
                f"{self._settings.user_id_header} header is required"
            )
        with self._repository.unit_of_work(write=False) as store:
            user = store.get_user(user_id.strip())
        if user is None:
            raise UnknownUserError(f"Unknown user: {user_id}")
        return user

    def resolve_display_names(self, user_ids: Sequence[str]) -> dict[str, str]:
        """Map every id to a name, falling back to the default for unknown users."""
        with self._repository.unit_of_work(write=False) as store:
            known = store.get_display_names(user_ids)
        fallback = self._settings.default_display_name
        return {user_id: known.get(user_id, fallback) for user_id in user_ids}

    def resolve_display_name(self, user_id: str) -> str:
        return self.resolve_display_names([user_id])[user_id]

    @staticmethod
    def require_administrator(user: UserIdentity) -> None:
        if not user.is_administrator:
            raise PermissionDeniedError(f"User {user.user_id} is not an administrator")
