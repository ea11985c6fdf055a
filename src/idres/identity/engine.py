"""
Identity reconciliation business logic.

Maps a (wallet address, username) pair onto exactly one account, links
wallets to existing accounts and renames accounts. The engine keeps no
state between calls; uniqueness is ultimately enforced by the store.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TypeVar

import structlog

from idres.identity.errors import (
    ConflictError,
    DocumentExistsError,
    DocumentMissingError,
    DuplicateValueError,
    ErrorKind,
    InvalidIdentifierError,
    InvariantViolation,
    NotFoundError,
    PreconditionFailedError,
    TransientError,
)
from idres.identity.guard import UniquenessGuard
from idres.identity.store import validate_account_id
from idres.identity.types import (
    USERNAME_ATTRIBUTE,
    WALLET_ATTRIBUTE,
    Account,
    AuthResult,
    AuthType,
)
from idres.identity.wallet_validation import validate_wallet_address

if TYPE_CHECKING:
    from idres.config import Settings
    from idres.identity.credentials import CredentialIssuer
    from idres.identity.store import IdentityStore

logger = structlog.get_logger()

T = TypeVar("T")

MAX_USERNAME_LENGTH = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_account_id() -> str:
    return uuid.uuid4().hex


class ReconciliationEngine:
    """
    Resolves callers to accounts.

    Precedence for authenticate() is fixed: wallet lookup, then username
    lookup, then creation. A wallet match always wins over whatever
    username was supplied alongside it.
    """

    def __init__(
        self,
        store: IdentityStore,
        issuer: CredentialIssuer,
        *,
        username_case_sensitive: bool = True,
        validate_wallets: bool = True,
        timeout: float | None = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_account_id,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._guard = UniquenessGuard(store, case_sensitive=username_case_sensitive)
        self._validate_wallets = validate_wallets
        self._timeout = timeout
        self._clock = clock
        self._id_factory = id_factory

    @classmethod
    def from_settings(cls, store: IdentityStore, issuer: CredentialIssuer, settings: Settings) -> ReconciliationEngine:
        return cls(
            store,
            issuer,
            username_case_sensitive=settings.username_case_sensitive,
            validate_wallets=settings.validate_wallet_addresses,
            timeout=settings.store_timeout_seconds,
        )

    @property
    def guard(self) -> UniquenessGuard:
        return self._guard

    # ---------------------------------------------------------------------------
    # Authentication
    # ---------------------------------------------------------------------------

    async def authenticate(
        self,
        wallet_address: str | None = None,
        username: str | None = None,
        *,
        timeout: float | None = None,
    ) -> AuthResult:
        """
        Log in, create, or reject based on the supplied identifiers.

        Raises:
            ConflictError: USERNAME_ALREADY_EXISTS, USERNAME_LINKED_TO_DIFFERENT_WALLET
                or WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT.
            InvalidIdentifierError: If an identifier is malformed.
            TransientError: If the store or issuer did not answer in time.
        """
        wallet_address = self._clean_wallet(wallet_address)
        username = self._clean_username(username)
        budget = self._timeout if timeout is None else timeout

        # 1. Wallet-first lookup
        if wallet_address is not None:
            existing = await self._bounded(self._store.get_by_attribute(WALLET_ATTRIBUTE, wallet_address), budget)
            if existing is not None:
                return await self._login_with_wallet(existing, username, budget)

        # 2. Username fallback
        if username is not None:
            key = self._guard.key_for(username)
            existing = await self._bounded(self._store.get_by_attribute(USERNAME_ATTRIBUTE, key), budget)  # type: ignore[arg-type]
            if existing is not None:
                if wallet_address is None:
                    return await self._login(existing, "anonymous", budget)
                if existing.wallet_address is not None and existing.wallet_address != wallet_address:
                    logger.info(
                        "username_wallet_conflict",
                        account_id=existing.id,
                        username=username,
                        wallet_address=wallet_address,
                    )
                    raise ConflictError(
                        ErrorKind.USERNAME_LINKED_TO_DIFFERENT_WALLET,
                        f"Username '{username}' is linked to a different wallet",
                    )
                return await self._attach_wallet_during_login(existing, wallet_address, username, budget)

        # 3. Creation
        return await self._create(wallet_address, username, budget)

    async def _login_with_wallet(self, account: Account, username: str | None, budget: float | None) -> AuthResult:
        if username is not None and account.username_key != self._guard.key_for(username):
            # The bound account's username is authoritative; never renamed here.
            logger.info(
                "username_mismatch_ignored",
                account_id=account.id,
                stored_username=account.username,
                supplied_username=username,
            )
        return await self._login(account, "wallet", budget)

    async def _login(self, account: Account, auth_type: AuthType, budget: float | None) -> AuthResult:
        try:
            account = await self._bounded(
                self._store.update(account.id, {"last_active_at": self._clock()}),
                budget,
            )
        except DocumentMissingError as e:
            raise NotFoundError(account.id) from e
        logger.info("account_authenticated", account_id=account.id, auth_type=auth_type)
        return await self._issue(account, is_new_user=False, auth_type=auth_type, budget=budget)

    async def _create(self, wallet_address: str | None, username: str | None, budget: float | None) -> AuthResult:
        # Last-chance check; the insert below is the real compare-and-swap.
        if username is not None and await self._bounded(self._guard.is_username_taken(username), budget):
            raise ConflictError(ErrorKind.USERNAME_ALREADY_EXISTS, f"Username '{username}' is already taken")

        now = self._clock()
        fields = {
            "username": username,
            "username_key": self._guard.key_for(username),
            "wallet_address": wallet_address,
            "is_anonymous": wallet_address is None,
            "created_at": now,
            "last_active_at": now,
            "wallet_linked_at": now if wallet_address is not None else None,
        }
        account_id = self._id_factory()

        try:
            account = await self._bounded(self._store.insert(account_id, fields), budget)
        except DuplicateValueError as e:
            if e.attribute == USERNAME_ATTRIBUTE:
                raise ConflictError(
                    ErrorKind.USERNAME_ALREADY_EXISTS, f"Username '{username}' is already taken"
                ) from e
            # A concurrent first login bound this wallet first; resolve to that account.
            winner = await self._bounded(self._store.get_by_attribute(WALLET_ATTRIBUTE, wallet_address), budget)  # type: ignore[arg-type]
            if winner is None:
                raise ConflictError(
                    ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT,
                    "Wallet already linked to another account",
                ) from e
            logger.info("wallet_create_race_resolved", account_id=winner.id, wallet_address=wallet_address)
            return await self._login_with_wallet(winner, username, budget)
        except DocumentExistsError as e:
            msg = f"Generated account id '{account_id}' already exists"
            raise InvariantViolation(msg) from e

        auth_type: AuthType = "wallet" if wallet_address is not None else "anonymous"
        logger.info(
            "account_created",
            account_id=account.id,
            auth_type=auth_type,
            wallet_address=wallet_address,
            username=username,
        )
        return await self._issue(account, is_new_user=True, auth_type=auth_type, budget=budget)

    async def _issue(
        self,
        account: Account,
        *,
        is_new_user: bool,
        auth_type: AuthType,
        budget: float | None,
    ) -> AuthResult:
        token = await self._bounded(self._issuer.issue(account.id), budget)
        return AuthResult(
            uid=account.id,
            token=token,
            is_new_user=is_new_user,
            username=account.username,
            auth_type=auth_type,
        )

    # ---------------------------------------------------------------------------
    # Linking policy
    # ---------------------------------------------------------------------------

    async def link_wallet(self, uid: str, wallet_address: str | None, *, timeout: float | None = None) -> Account:
        """
        Attach a wallet to an account that does not have one yet.

        Linking the wallet the account already holds is a no-op.

        Raises:
            ConflictError: WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT if another account
                holds the wallet, ACCOUNT_ALREADY_HAS_WALLET if this account is bound
                to a different one.
            NotFoundError: If the account does not exist.
        """
        validate_account_id(uid)
        wallet_address = self._clean_wallet(wallet_address)
        if wallet_address is None:
            raise InvalidIdentifierError("wallet address", "is required")
        budget = self._timeout if timeout is None else timeout

        holder = await self._bounded(self._store.get_by_attribute(WALLET_ATTRIBUTE, wallet_address), budget)
        if holder is not None:
            if holder.id != uid:
                logger.warning("wallet_link_rejected", account_id=uid, holder_id=holder.id, wallet_address=wallet_address)
                raise ConflictError(
                    ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT,
                    "Wallet already linked to another account",
                )
            return holder

        account = await self._bounded(self._store.get_by_id(uid), budget)
        if account is None:
            raise NotFoundError(uid)
        if account.wallet_address is not None:
            raise ConflictError(
                ErrorKind.ACCOUNT_ALREADY_HAS_WALLET,
                f"Account '{uid}' is already bound to a different wallet",
            )

        try:
            linked = await self._bind_wallet(uid, wallet_address, budget)
        except PreconditionFailedError as e:
            current = await self._bounded(self._store.get_by_id(uid), budget)
            if current is not None and current.wallet_address == wallet_address:
                return current
            raise ConflictError(
                ErrorKind.ACCOUNT_ALREADY_HAS_WALLET,
                f"Account '{uid}' is already bound to a different wallet",
            ) from e
        except DuplicateValueError as e:
            raise ConflictError(
                ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT,
                "Wallet already linked to another account",
            ) from e

        logger.info("wallet_linked", account_id=uid, wallet_address=wallet_address)
        return linked

    async def _attach_wallet_during_login(
        self, account: Account, wallet_address: str, username: str, budget: float | None
    ) -> AuthResult:
        try:
            linked = await self._bind_wallet(account.id, wallet_address, budget)
        except PreconditionFailedError as e:
            current = await self._bounded(self._store.get_by_id(account.id), budget)
            if current is not None and current.wallet_address == wallet_address:
                return await self._issue(current, is_new_user=False, auth_type="wallet", budget=budget)
            raise ConflictError(
                ErrorKind.USERNAME_LINKED_TO_DIFFERENT_WALLET,
                f"Username '{account.username}' is linked to a different wallet",
            ) from e
        except DuplicateValueError as e:
            # Another caller bound the wallet first; resolve it wallet-first like _create does.
            holder = await self._bounded(self._store.get_by_attribute(WALLET_ATTRIBUTE, wallet_address), budget)
            if holder is None:
                raise ConflictError(
                    ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT,
                    "Wallet already linked to another account",
                ) from e
            logger.info("wallet_attach_race_resolved", account_id=holder.id, wallet_address=wallet_address)
            return await self._login_with_wallet(holder, username, budget)

        logger.info("wallet_linked", account_id=account.id, wallet_address=wallet_address, via="authenticate")
        return await self._issue(linked, is_new_user=False, auth_type="wallet", budget=budget)

    async def _bind_wallet(self, account_id: str, wallet_address: str, budget: float | None) -> Account:
        """Conditional write: only succeeds while the account has no wallet."""
        now = self._clock()
        try:
            return await self._bounded(
                self._store.update(
                    account_id,
                    {
                        "wallet_address": wallet_address,
                        "wallet_linked_at": now,
                        "is_anonymous": False,
                        "last_active_at": now,
                    },
                    expect={"wallet_address": None},
                ),
                budget,
            )
        except DocumentMissingError as e:
            raise NotFoundError(account_id) from e

    # ---------------------------------------------------------------------------
    # Rename
    # ---------------------------------------------------------------------------

    async def rename(self, uid: str, new_username: str | None, *, timeout: float | None = None) -> Account:
        """
        Set or change an account's username.

        Raises:
            ConflictError: USERNAME_ALREADY_EXISTS if another account holds the name.
            NotFoundError: If the account does not exist.
        """
        validate_account_id(uid)
        username = self._clean_username(new_username)
        if username is None:
            raise InvalidIdentifierError("username", "is required")
        budget = self._timeout if timeout is None else timeout

        account = await self._bounded(self._store.get_by_id(uid), budget)
        if account is None:
            raise NotFoundError(uid)
        if await self._bounded(self._guard.is_username_taken(username, exclude_id=uid), budget):
            raise ConflictError(ErrorKind.USERNAME_ALREADY_EXISTS, f"Username '{username}' is already taken")

        try:
            renamed = await self._bounded(
                self._store.update(
                    uid,
                    {
                        "username": username,
                        "username_key": self._guard.key_for(username),
                        "last_active_at": self._clock(),
                    },
                ),
                budget,
            )
        except DuplicateValueError as e:
            raise ConflictError(ErrorKind.USERNAME_ALREADY_EXISTS, f"Username '{username}' is already taken") from e
        except DocumentMissingError as e:
            raise NotFoundError(uid) from e

        logger.info("username_updated", account_id=uid, previous=account.username, username=username)
        return renamed

    # ---------------------------------------------------------------------------
    # Queries and activity
    # ---------------------------------------------------------------------------

    async def get_account(self, uid: str, *, timeout: float | None = None) -> Account:
        """Fetch an account by id. Raises NotFoundError if absent."""
        budget = self._timeout if timeout is None else timeout
        account = await self._bounded(self._store.get_by_id(validate_account_id(uid)), budget)
        if account is None:
            raise NotFoundError(uid)
        return account

    async def record_activity(self, uid: str, *, timeout: float | None = None) -> Account:
        """Bump last_active_at (used on logout)."""
        budget = self._timeout if timeout is None else timeout
        try:
            account = await self._bounded(
                self._store.update(validate_account_id(uid), {"last_active_at": self._clock()}),
                budget,
            )
        except DocumentMissingError as e:
            raise NotFoundError(uid) from e
        logger.debug("account_activity_recorded", account_id=uid)
        return account

    async def is_username_available(self, username: str | None, *, timeout: float | None = None) -> bool:
        username = self._clean_username(username)
        if username is None:
            raise InvalidIdentifierError("username", "is required")
        budget = self._timeout if timeout is None else timeout
        return not await self._bounded(self._guard.is_username_taken(username), budget)

    async def is_wallet_available(self, wallet_address: str | None, *, timeout: float | None = None) -> bool:
        wallet_address = self._clean_wallet(wallet_address)
        if wallet_address is None:
            raise InvalidIdentifierError("wallet address", "is required")
        budget = self._timeout if timeout is None else timeout
        return not await self._bounded(self._guard.is_wallet_taken(wallet_address), budget)

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    @staticmethod
    async def _bounded(awaitable: Awaitable[T], timeout: float | None) -> T:
        """Await a collaborator call, turning a timeout into a TransientError."""
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            logger.warning("identity_call_timed_out", timeout=timeout)
            msg = f"Identity store did not respond within {timeout}s"
            raise TransientError(msg) from e

    def _clean_username(self, username: str | None) -> str | None:
        if username is None:
            return None
        username = username.strip()
        if not username:
            return None
        if len(username) > MAX_USERNAME_LENGTH:
            raise InvalidIdentifierError("username", f"must be at most {MAX_USERNAME_LENGTH} characters")
        # Case folding can lengthen a name ("ß" -> "ss"); the stored key has the same limit.
        key = self._guard.key_for(username)
        if key is not None and len(key) > MAX_USERNAME_LENGTH:
            raise InvalidIdentifierError(
                "username", f"must be at most {MAX_USERNAME_LENGTH} characters once case-folded"
            )
        return username

    def _clean_wallet(self, wallet_address: str | None) -> str | None:
        if wallet_address is None:
            return None
        wallet_address = wallet_address.strip()
        if not wallet_address:
            return None
        if self._validate_wallets:
            try:
                validate_wallet_address(wallet_address)
            except ValueError as e:
                raise InvalidIdentifierError("wallet address", str(e)) from e
        elif len(wallet_address) > 64:
            raise InvalidIdentifierError("wallet address", "must be at most 64 characters")
        return wallet_address
