"""
FastAPI dependencies for JWT authentication.
Tokens are issued elsewhere; this service only verifies them.
"""
import jwt
from fastapi import Header, HTTPException, status
from typing import Optional
from src.core import config


def decode_token(token: str) -> dict:
    """
    Decode and verify a JWT.

    Returns:
        Token payload with a non-empty subject

    Raises:
        HTTPException: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, config.settings.jwt_secret, algorithms=[config.settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    if not payload.get('sub'):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )
    return payload


def _bearer_payload(authorization: Optional[str]) -> dict:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    if not authorization.startswith('Bearer '):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format"
        )

    return decode_token(authorization[7:])


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify JWT token from Authorization header.

    Args:
        authorization: Authorization header value (Bearer <token>)

    Returns:
        Owner id (token subject)

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    return str(_bearer_payload(authorization)['sub'])


def verify_admin(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify an admin JWT.

    Raises:
        HTTPException: 401 for a bad token, 403 if the role is not admin
    """
    payload = _bearer_payload(authorization)
    if payload.get('role') != 'admin':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return str(payload['sub'])
