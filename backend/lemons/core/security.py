"""Authentication dependencies"""
import logging
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lemons.db.redis import get_session
from lemons.db.session import get_db
from lemons.models.account import Account
from lemons.services.account_service import ensure_account

security_logger = logging.getLogger("security")


def _session_identity(request: Request) -> Optional[Dict]:
    session_id = request.cookies.get("session_id")
    if not session_id:
        return None
    return get_session(session_id)


def require_auth(request: Request) -> Dict:
    """Dependency: Require authentication, return ``{"account_id", "email"}``"""
    if not request.cookies.get("session_id"):
        raise HTTPException(401, "Not authenticated. Please log in.")

    identity = _session_identity(request)
    if not identity:
        security_logger.info(f"Expired or unknown session on {request.url.path}")
        raise HTTPException(401, "Session expired. Please log in again.")
    return identity


def require_account(identity: Dict = Depends(require_auth), db: Session = Depends(get_db)) -> Account:
    """Dependency: the signed-in caller's account, created on first use"""
    return ensure_account(identity["account_id"], identity.get("email"), db)


def optional_account(request: Request, db: Session = Depends(get_db)) -> Optional[Account]:
    """Dependency: the caller's account if signed in, None for guests"""
    identity = _session_identity(request)
    if not identity:
        return None
    return ensure_account(identity["account_id"], identity.get("email"), db)
