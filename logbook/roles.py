"""
Role reconciliation between the identity provider and the local users table.

The users table is the record of truth. Identity-provider claims are only
consulted once, when a local row is first created:

    local_role = lookup(db) or derive_role(claims)

Inbound sync (provider -> local) upserts profile fields but never touches
an existing role, so an ADMIN cannot be demoted by a provider notification.
Outbound sync (local -> provider) pushes the role into public metadata
after explicit changes; it is best effort and a failure never rolls back
the committed local change.
"""

import logging
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from logbook.config import AdminConfig
from logbook.errors import InternalError, NotFoundError, UnauthenticatedError
from logbook.models import AuditAction, Database, Role, User, UserPreferences
from logbook.services.audit import AuditLogger
from logbook.services.identity_provider import IdentityProfile, IdentityProviderError

logger = logging.getLogger(__name__)

VERIFIED_ROLES = {True: Role.PILOT, False: Role.USER}


class IdentityProvider(Protocol):
    """What the app needs from the identity provider client."""

    def get_user(self, external_id: str) -> IdentityProfile: ...

    def update_public_metadata(self, external_id: str, metadata: dict) -> None: ...


def is_admin_by_env(
    external_id: Optional[str],
    email: Optional[str],
    admin_config: AdminConfig,
) -> bool:
    """True when the account is on one of the configured admin allow-lists."""
    if external_id and external_id in admin_config.external_ids:
        return True
    if email:
        allowed = {e.lower() for e in admin_config.emails}
        return email.lower() in allowed
    return False


def derive_role(profile: IdentityProfile, admin_config: AdminConfig) -> Role:
    """
    Initial role for a new local user.

    Order: valid metadata role, then env allow-lists, then USER.
    """
    claimed = profile.metadata_role
    if claimed in Role.__members__:
        return Role(claimed)
    if is_admin_by_env(profile.external_id, profile.email, admin_config):
        return Role.ADMIN
    return Role.USER


class RoleService:
    """
    Provisioning, inbound/outbound sync and explicit role transitions.

    Collaborators are injected so tests can pass an in-memory provider.
    """

    def __init__(
        self,
        db: Database,
        identity_provider: IdentityProvider,
        audit: AuditLogger,
        admin_config: AdminConfig,
    ):
        self.db = db
        self.identity_provider = identity_provider
        self.audit = audit
        self.admin_config = admin_config

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def find_by_external_id(self, external_id: str) -> Optional[User]:
        with self.db.session() as session:
            return session.scalars(
                select(User).where(User.external_id == external_id)
            ).first()

    def ensure_user(self, external_id: str) -> Tuple[User, bool]:
        """
        Local user for external_id, creating it on first sight.

        Returns (user, created). Concurrent first requests converge on a
        single row: the loser of the insert race re-reads the winner's row.

        Raises:
            UnauthenticatedError if the provider has no such account
            InternalError if the provider cannot be reached
        """
        user = self.find_by_external_id(external_id)
        if user is not None:
            return user, False

        try:
            profile = self.identity_provider.get_user(external_id)
        except IdentityProviderError as e:
            if e.not_found:
                raise UnauthenticatedError('User not found at identity provider')
            raise InternalError(str(e), retryable=e.retryable)

        return self._insert(profile)

    def _insert(self, profile: IdentityProfile) -> Tuple[User, bool]:
        role = derive_role(profile, self.admin_config)
        try:
            with self.db.session() as session:
                user = User(
                    external_id=profile.external_id,
                    email=profile.email,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    role=role,
                )
                user.preferences = UserPreferences()
                session.add(user)
                session.flush()
            logger.info(f'Provisioned user {user.id} for {profile.external_id} as {role.value}')
            return user, True
        except IntegrityError:
            logger.info(f'Concurrent provisioning for {profile.external_id}, using existing row')
            existing = self.find_by_external_id(profile.external_id)
            if existing is None:
                raise
            return existing, False

    # ------------------------------------------------------------------
    # Inbound sync (provider -> local)
    # ------------------------------------------------------------------

    def sync_inbound(self, profile: IdentityProfile) -> User:
        """
        Apply a provider create/update notification.

        Profile fields are refreshed; an existing role is kept as is. If a
        first request provisions the same account mid-sync, the sync is
        re-applied to that row.
        """
        try:
            user, created = self._apply_inbound(profile)
        except IntegrityError:
            logger.info(f'Concurrent provisioning for {profile.external_id}, refreshing existing row')
            user, created = self._apply_inbound(profile)

        action = 'Created' if created else 'Updated'
        logger.info(f'{action} user {user.id} from provider sync ({user.role.value})')
        return user

    def _apply_inbound(self, profile: IdentityProfile) -> Tuple[User, bool]:
        with self.db.session() as session:
            user = session.scalars(
                select(User).where(User.external_id == profile.external_id)
            ).first()

            if user is None:
                created = True
                user = User(
                    external_id=profile.external_id,
                    role=derive_role(profile, self.admin_config),
                )
                session.add(user)
            else:
                created = False

            user.email = profile.email
            user.first_name = profile.first_name
            user.last_name = profile.last_name

            if user.preferences is None:
                user.preferences = UserPreferences()
            session.flush()
        return user, created

    def delete_by_external_id(self, external_id: str) -> bool:
        """Remove the local user. Absence is not an error."""
        with self.db.session() as session:
            user = session.scalars(
                select(User).where(User.external_id == external_id)
            ).first()
            if user is None:
                logger.info(f'No local user for deleted account {external_id}')
                return False
            session.delete(user)
        logger.info(f'Deleted local user for {external_id}')
        return True

    # ------------------------------------------------------------------
    # Outbound sync (local -> provider)
    # ------------------------------------------------------------------

    def push_role(self, user: User) -> bool:
        """Mirror the local role into provider metadata. Never raises."""
        try:
            self.identity_provider.update_public_metadata(user.external_id, {'role': user.role.value})
            return True
        except Exception as e:
            logger.error(f'Failed to push role for {user.external_id}: {e}')
            return False

    def push_preferences(self, external_id: str, metadata: dict) -> bool:
        """Mirror display preferences into provider metadata. Never raises."""
        if not metadata:
            return True
        try:
            self.identity_provider.update_public_metadata(external_id, metadata)
            return True
        except Exception as e:
            logger.error(f'Failed to mirror preferences for {external_id}: {e}')
            return False

    # ------------------------------------------------------------------
    # Explicit transitions
    # ------------------------------------------------------------------

    def change_role(
        self,
        actor_id: str,
        target_id: str,
        role: Role,
        action: AuditAction = AuditAction.ROLE_CHANGE,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> User:
        """
        Set a user's role: local write, then provider push, then audit.

        Raises:
            NotFoundError if target_id does not exist
        """
        with self.db.session() as session:
            user = session.get(User, target_id)
            if user is None:
                raise NotFoundError('User not found')
            old_role = user.role
            user.role = role

        logger.info(f'Role of {user.id} changed {old_role.value} -> {role.value} by {actor_id}')

        self.push_role(user)
        self.audit.record(
            actor_id=actor_id,
            action=action,
            entity_type='User',
            entity_id=user.id,
            old_values={'role': old_role.value},
            new_values={'role': role.value},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user

    def verify_pilot(
        self,
        actor_id: str,
        target_id: str,
        verified: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> User:
        """verified=True makes the user a PILOT, False reverts to USER."""
        return self.change_role(
            actor_id,
            target_id,
            VERIFIED_ROLES[verified],
            action=AuditAction.VERIFY if verified else AuditAction.UNVERIFY,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def resolve_target(self, identifier: str) -> Optional[User]:
        """Look a user up by internal id, falling back to external id."""
        with self.db.session() as session:
            user = session.get(User, identifier)
            if user is None:
                user = session.scalars(
                    select(User).where(User.external_id == identifier)
                ).first()
            return user

    def list_admins(self) -> List[User]:
        with self.db.session() as session:
            return list(session.scalars(
                select(User).where(User.role == Role.ADMIN).order_by(User.created_at)
            ).all())
