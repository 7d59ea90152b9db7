"""
auth/service.py -- Credential issuer and account operations.

Registration state machine (per attempt):

    Anonymous --register--> PendingActivation --activate--> Active
                                    |
                                    +-- token expires --> Abandoned

PendingActivation is not persisted anywhere: the candidate account lives only
inside the signed activation token. Nothing touches the directory until
activate() succeeds, so an abandoned registration leaves no trace and a failed
activation email leaves no half-created user.

Session tail (login and social login):
    issue access + refresh tokens -> write the session cache entry ->
    return SessionGrant. Cookie writing is the route's job.

Cache discipline:
    Every write to the session cache goes through _remember(), which stores
    the public snapshot with the default TTL (the refresh-token lifetime).
    Every path that changes a user refreshes or drops its entry.

Dependencies are injected through the constructor -- the service holds no
module-level state, so tests pass in-memory fakes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import CodeMismatch, DuplicateEmail, InvalidCredentials, InvalidRole, InvalidToken, UserNotFound
from auth.models import ROLES, ActivationClaim, Identity, RegistrationTicket, SessionGrant, User
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import TokenCodec, TokenKind, new_activation_code
from cache.store import SessionCache
from mail.sender import Mailer, redact_email

logger = logging.getLogger("coursegate.auth.service")

ACTIVATION_TEMPLATE = "activation-mail.html"
ACTIVATION_SUBJECT = "Activate your account"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialService:
    """Register, activate, log in, and manage user accounts.

    Usage:
        service = CredentialService(store, cache, codec, mailer)
        ticket = service.register("Ada", "ada@example.com", "pw")
        service.activate(ticket.activation_token, ticket.activation_code)
        grant = service.login("ada@example.com", "pw")
    """

    def __init__(self, store: UserStore, cache: SessionCache, codec: TokenCodec, mailer: Mailer) -> None:
        self.store = store
        self.cache = cache
        self.codec = codec
        self.mailer = mailer

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, avatar: str | None = None) -> RegistrationTicket:
        """Start a registration: sign an activation claim and email its code.

        Raises DuplicateEmail if the email is taken, DeliveryError if the
        activation email cannot be sent. No directory write happens here.
        """
        email = normalize_email(email)
        if self.store.find_by_email(email) is not None:
            raise DuplicateEmail()

        claim = ActivationClaim(
            name=name,
            email=email,
            password_hash=hash_password(password),
            avatar=avatar,
            activation_code=new_activation_code(),
        )
        token = self.codec.issue(TokenKind.ACTIVATION, claim.to_payload(), self.codec.activation_ttl_seconds)

        self.mailer.send(
            email,
            ACTIVATION_SUBJECT,
            ACTIVATION_TEMPLATE,
            {
                "user": {"name": name},
                "activation_code": claim.activation_code,
                "expires_minutes": max(1, self.codec.activation_ttl_seconds // 60),
            },
        )
        logger.info("Activation email sent to %s", redact_email(email))
        return RegistrationTicket(email=email, activation_token=token, activation_code=claim.activation_code)

    def activate(self, activation_token: str, activation_code: str) -> User:
        """Finish a registration and create the user. Does not log in.

        Raises InvalidToken (400 -- a bad form submission, not an auth
        failure), CodeMismatch, or DuplicateEmail when the email was claimed
        between register() and now -- including by an earlier activation of
        this same token.
        """
        try:
            payload = self.codec.verify(TokenKind.ACTIVATION, activation_token)
            claim = ActivationClaim.from_payload(payload)
        except InvalidToken as exc:
            raise InvalidToken("Invalid or expired activation token.", status_code=400) from exc
        except (KeyError, TypeError) as exc:
            raise InvalidToken("Invalid or expired activation token.", status_code=400) from exc

        if claim.activation_code != activation_code:
            raise CodeMismatch()

        if self.store.find_by_email(claim.email) is not None:
            raise DuplicateEmail()
        try:
            user = self.store.create_user(
                User(
                    email=claim.email,
                    name=claim.name,
                    avatar=claim.avatar,
                    hashed_password=claim.password_hash,
                )
            )
        except IntegrityError as exc:
            # Lost a race with a concurrent activation of the same email.
            raise DuplicateEmail() from exc
        logger.info("Activated user %s", user.id)
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> SessionGrant:
        """Check credentials and open a session.

        Unknown email, wrong password, and social-only accounts all raise the
        same InvalidCredentials, and all run one bcrypt comparison [C1].
        """
        user = self.store.find_by_email(normalize_email(email))
        if not self.store.compare_password(user, password):
            raise InvalidCredentials()
        return self._open_session(user)

    def social_login(self, email: str, name: str, avatar: str | None = None) -> SessionGrant:
        """Find-or-create by email, then open a session.

        The upstream identity assertion (OAuth provider) has already been
        verified by the caller. New accounts get no local password.
        """
        email = normalize_email(email)
        user = self.store.find_by_email(email)
        if user is None:
            try:
                user = self.store.create_user(User(email=email, name=name, avatar=avatar))
                logger.info("Created social user %s", user.id)
            except IntegrityError:
                # Concurrent first login for the same email -- use the winner.
                user = self.store.find_by_email(email)
                if user is None:
                    raise
        return self._open_session(user)

    def logout(self, user_id: str | None) -> None:
        """Drop the session cache entry. Idempotent; None means nothing to drop."""
        if user_id:
            self.cache.delete(user_id)

    def _open_session(self, user: User) -> SessionGrant:
        access_token = self.codec.issue_access(user.id)
        refresh_token = self.codec.issue_refresh(user.id)
        self._remember(user)
        logger.info("Opened session for user %s", user.id)
        return SessionGrant(user=user, access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Identity resolution (read-through cache)
    # ------------------------------------------------------------------

    def resolve(self, user_id: str) -> Identity:
        """Return the user behind user_id: cache first, then the directory.

        A directory hit repopulates the cache. Raises UserNotFound when the
        directory has no such user (deleted since the token was issued).
        UpstreamUnavailable from the directory propagates.
        """
        snapshot = self.cache.get(user_id)
        if snapshot is not None:
            try:
                return Identity(user=User.from_public(snapshot), source="cache")
            except (KeyError, TypeError):
                logger.warning("Malformed session cache entry for %s; reloading", user_id)
                self.cache.delete(user_id)

        user = self.store.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        self._remember(user)
        return Identity(user=user, source="directory")

    def _remember(self, user: User) -> None:
        self.cache.set(user.id, user.public())

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_info(self, user_id: str, name: str) -> User:
        user = self.store.update_user(user_id, name=name)
        if user is None:
            raise UserNotFound()
        self._remember(user)
        return user

    def update_password(self, user_id: str, old_password: str, new_password: str) -> User:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if not self.store.compare_password(user, old_password):
            raise InvalidCredentials("Old password is incorrect.")
        updated = self.store.set_password(user_id, new_password)
        if updated is None:
            raise UserNotFound()
        self._remember(updated)
        logger.info("Password changed for user %s", user_id)
        return updated

    def update_avatar(self, user_id: str, avatar: str) -> User:
        user = self.store.update_user(user_id, avatar=avatar)
        if user is None:
            raise UserNotFound()
        self._remember(user)
        return user

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def update_role(self, user_id: str, role: str) -> User:
        if role not in ROLES:
            raise InvalidRole(f"Unknown role: {role!r}.")
        user = self.store.update_user(user_id, role=role)
        if user is None:
            raise UserNotFound()
        self._remember(user)
        logger.info("Role of user %s set to %s", user_id, role)
        return user

    def delete_user(self, user_id: str) -> None:
        """Delete the user and drop its cache entry.

        Tokens already issued stay valid until expiry, but the access guard's
        lookup now fails with UserNotFound.
        """
        if not self.store.delete_user(user_id):
            raise UserNotFound()
        self.cache.delete(user_id)
        logger.info("Deleted user %s", user_id)
