"""Account lookup and first-touch creation"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lemons.models.account import Account

logger = logging.getLogger(__name__)


def get_account(account_id: str, db: Session) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def get_account_by_stripe_account_id(stripe_account_id: str, db: Session) -> Optional[Account]:
    return db.query(Account).filter(Account.external_payment_account_id == stripe_account_id).first()


def ensure_account(account_id: str, email: Optional[str], db: Session) -> Account:
    """Return the account behind a session, creating it on first authenticated action"""
    account = get_account(account_id, db)
    if account:
        if email and not account.email:
            account.email = email
            db.commit()
        return account

    account = Account(id=account_id, email=email)
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request created it first
        db.rollback()
        account = get_account(account_id, db)
        if account is None:
            raise
        return account
    db.refresh(account)
    logger.info(f"Created account {account_id}")
    return account
