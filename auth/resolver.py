"""
auth/resolver.py -- Maps an incoming credential claim to exactly one Account.

Three paths:

  register(...)           -- password registration. AlreadyExists if the email
                             is taken, otherwise a new unverified account.
  find_for_sign_in(email) -- email-only sign-in. NotFound if absent. Never creates.
  resolve_federated(id)   -- Google sign-in:
                               1. account already linked to this subject -> reuse
                               2. account with the same email -> link + verify
                               3. otherwise -> create a verified Google-only account

Step 2 deliberately merges a password account into a dual-credential account
so one person never ends up with two accounts for one address.

Races:
  The "look up, then write" sequence is not atomic on its own. The store's
  UNIQUE constraints (email, federated_id) are the backstop: the losing writer
  gets IntegrityError. For the federated path we retry the whole resolution
  once -- by then the winner's row is visible and step 1 or 2 picks it up. A
  second IntegrityError becomes Conflict. For registration a uniqueness
  violation simply means the email is taken: AlreadyExists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError

from auth.errors import AlreadyExists, Conflict, NotFound
from auth.models import Account, FederatedIdentity
from auth.store import AccountStore

logger = logging.getLogger("notekeeper.auth")

_FEDERATED_ATTEMPTS = 2
_DISPLAY_NAME_MAX = 50


class AccountResolver:
    def __init__(self, store: AccountStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Password path
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password_hash: str,
        display_name: str | None = None,
        date_of_birth: date | None = None,
    ) -> Account:
        """Create an unverified password account. Raises AlreadyExists if the email is taken."""
        if self._store.get_by_email(email) is not None:
            raise AlreadyExists()
        account = Account(
            email=email,
            password_hash=password_hash,
            display_name=display_name,
            date_of_birth=date_of_birth,
            email_verified=False,
        )
        try:
            created = self._store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration for the same email committed first.
            logger.info("Registration race lost for %s", account.email)
            raise AlreadyExists() from exc
        logger.info("Account %s registered with password", created.id)
        return created

    def find_for_sign_in(self, email: str) -> Account:
        account = self._store.get_by_email(email)
        if account is None:
            raise NotFound()
        return account

    # ------------------------------------------------------------------
    # Federated path
    # ------------------------------------------------------------------

    def resolve_federated(self, identity: FederatedIdentity) -> Account:
        """Reuse, link, or create the account for a verified Google identity."""
        for attempt in range(1, _FEDERATED_ATTEMPTS + 1):
            try:
                return self._resolve_federated_once(identity)
            except IntegrityError:
                logger.warning(
                    "Uniqueness race resolving Google subject %s (attempt %d/%d)",
                    identity.subject_id,
                    attempt,
                    _FEDERATED_ATTEMPTS,
                )
        raise Conflict()

    def _resolve_federated_once(self, identity: FederatedIdentity) -> Account:
        account = self._store.get_by_federated_id(identity.subject_id)
        if account is not None:
            return account

        account = self._store.get_by_email(identity.email)
        if account is not None:
            return self._link(account, identity)

        display_name = identity.name[:_DISPLAY_NAME_MAX] if identity.name else None
        created = self._store.create_account(
            Account(
                email=identity.email,
                federated_id=identity.subject_id,
                display_name=display_name,
                email_verified=True,
            )
        )
        logger.info("Account %s created from Google sign-in", created.id)
        return created

    def _link(self, account: Account, identity: FederatedIdentity) -> Account:
        """Attach the Google subject to an existing account and mark its email verified.

        An account already linked to a *different* subject keeps its link: the
        email is still proven by Google, but re-pointing the link would lock the
        original Google identity out.
        """
        if account.federated_id is None:
            if self._store.link_federated_id(account.id, identity.subject_id):
                account.federated_id = identity.subject_id
                account.email_verified = True
                logger.info("Account %s linked to Google subject %s", account.id, identity.subject_id)
                return account
            # Another request linked it between our read and our write.
            refreshed = self._store.get_by_id(account.id)
            if refreshed is None:
                raise Conflict()
            account = refreshed
        elif account.federated_id != identity.subject_id:
            logger.warning(
                "Account %s is linked to another Google subject; keeping the existing link",
                account.id,
            )

        if not account.email_verified:
            self._store.mark_email_verified(account.id)
            account.email_verified = True
        return account
