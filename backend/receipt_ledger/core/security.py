import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import firebase_admin
from firebase_admin import auth, credentials

from receipt_ledger.core.config import settings

logger = logging.getLogger(__name__)

LOCAL_USER = {"uid": "local", "email": None, "auth": "disabled"}


def init_firebase() -> None:
    """
    Initialize the Firebase Admin SDK once per process.

    1. JSON Key File: if FIREBASE_CREDENTIALS_PATH is set and the file exists.
    2. Application Default Credentials (ADC) otherwise, as on Cloud Run.
    """
    if firebase_admin._apps:
        return

    cred_path = settings.FIREBASE_CREDENTIALS_PATH
    if cred_path and os.path.exists(cred_path):
        logger.info("firebase_init mode=key_file path=%s", cred_path)
        firebase_admin.initialize_app(credentials.Certificate(cred_path))
    else:
        logger.info("firebase_init mode=adc")
        firebase_admin.initialize_app()


# auto_error=False so that AUTH_ENABLED=false works without a header.
security_scheme = HTTPBearer(auto_error=False)


async def verify_token(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> dict:
    """
    Extract and verify a Firebase ID token from ``Authorization: Bearer <token>``.

    Returns:
        dict: Decoded token payload containing at least 'uid'.

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not settings.AUTH_ENABLED:
        return dict(LOCAL_USER)

    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
        )

    try:
        init_firebase()
        return auth.verify_id_token(creds.credentials)
    except auth.ExpiredIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired. Please re-authenticate.",
        )
    except auth.InvalidIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token.",
        )
    except Exception as exc:
        logger.warning("token_verification_failed error=%s", str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials.",
        )


def get_current_user(decoded_token: dict = Depends(verify_token)) -> dict:
    """
    Use as: current_user = Depends(get_current_user)
    """
    return decoded_token
