"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores, services and
routes do the work; these types only own domain shape and the mapping to the
outward snapshot.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = frozenset({ROLE_USER, ROLE_ADMIN})


@dataclass(frozen=True)
class User:
    """An identity record owned by the user directory.

    hashed_password is None for social-only users (they have no local
    password). It is never part of public() -- the snapshot that goes into the
    session cache and into HTTP responses.

    courses holds purchased-course ids. The catalog service owns what they
    point to; this record only keeps the references.
    """

    email: str
    name: str
    id: str = ""
    role: str = ROLE_USER
    hashed_password: str | None = None
    avatar: str | None = None
    courses: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None

    def public(self) -> dict:
        """Return the outward snapshot: every field except the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "avatar": self.avatar,
            "courses": list(self.courses),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_public(cls, data: dict) -> User:
        """Rebuild a User from a public() snapshot (e.g. a cache entry).

        The result has no password hash; it is only ever used for identity and
        role checks, never for credential comparison.
        """
        return cls(
            id=data["id"],
            email=data["email"],
            name=data["name"],
            role=data.get("role", ROLE_USER),
            avatar=data.get("avatar"),
            courses=tuple(data.get("courses") or ()),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class Identity:
    """The caller as resolved by the access guard.

    source is "cache" or "directory" -- which tier answered the lookup.
    """

    user: User
    source: str

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role


@dataclass(frozen=True)
class ActivationClaim:
    """A pending registration. Lives only inside a signed activation token.

    password_hash is the bcrypt hash of the submitted password, computed
    before signing so plaintext never travels inside the token.
    """

    name: str
    email: str
    password_hash: str
    activation_code: str
    avatar: str | None = None

    def to_payload(self) -> dict:
        return {
            "user": {
                "name": self.name,
                "email": self.email,
                "password_hash": self.password_hash,
                "avatar": self.avatar,
            },
            "activation_code": self.activation_code,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> ActivationClaim:
        user = payload["user"]
        return cls(
            name=user["name"],
            email=user["email"],
            password_hash=user["password_hash"],
            avatar=user.get("avatar"),
            activation_code=payload["activation_code"],
        )


@dataclass(frozen=True)
class RegistrationTicket:
    """What register() hands back: the signed token and the code it carries."""

    email: str
    activation_token: str
    activation_code: str


@dataclass(frozen=True)
class SessionGrant:
    """A freshly opened session: the user plus both signed tokens."""

    user: User
    access_token: str
    refresh_token: str
