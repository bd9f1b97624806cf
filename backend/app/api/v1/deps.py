# app/api/v1/deps.py

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from uuid import UUID
import jwt

from app.db.database import get_db
from app.db.models import Case, User, UserRole
from app.core.security import decode_access_token
from app.services.access_gate import AccessAction, AccessGate
from app.services.case_store import case_store
from app.utils.exceptions import CaseNotFoundError, UnauthorizedError

security = HTTPBearer()

# ============================================================================
# JWT Dependency
# ============================================================================

def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Validate JWT token and return current user.
    """
    token = credentials.credentials

    try:
        payload = decode_access_token(token)
        user_id = UUID(str(payload.get("sub")))
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired"
        )
    except (jwt.PyJWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    user = db.query(User).filter(User.id == user_id).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated"
        )

    return user

# ============================================================================
# Role / ownership dependencies
# ============================================================================

def require_role(*roles: UserRole):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if UserRole(current_user.role) not in roles:
            raise UnauthorizedError(
                f"This action requires role: {', '.join(r.value for r in roles)}"
            )
        return current_user
    return dependency


require_admin = require_role(UserRole.admin)
require_attorney = require_role(UserRole.attorney)
require_juror = require_role(UserRole.juror)


def get_owned_case(
    case_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Case:
    """Case visible to its owning attorney (admins see every case)."""
    case = case_store.get_case(db, case_id)
    if not case:
        raise CaseNotFoundError(str(case_id))
    if UserRole(current_user.role) != UserRole.admin and case.owner_id != current_user.id:
        raise UnauthorizedError("You don't have access to this case")
    return case


def require_access(action: AccessAction):
    """
    Runs the access gate before the route body. The route receives the
    freshly loaded case.
    """
    def dependency(
        case_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> Case:
        return AccessGate(db).authorize(current_user, case_id, action)
    return dependency
