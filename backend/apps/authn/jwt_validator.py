"""
JWT validation for Keycloak tokens.

A valid token becomes a Session: the identity every owner-scoped
operation runs under.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt
from jwt import PyJWK
from django.conf import settings

from .jwks import get_jwks_cache

logger = logging.getLogger(__name__)

# Keycloak housekeeping roles, not meaningful to the app
INTERNAL_ROLES = {'offline_access', 'uma_authorization'}


class JWTValidationError(Exception):
    """Raised when JWT validation fails."""
    pass


@dataclass
class Session:
    """An authenticated user."""
    user_id: str  # Keycloak 'sub'; the owner ID for all data
    user_name: str
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    expires_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.user_id,
            'username': self.user_name,
            'email': self.email,
            'roles': self.roles,
        }


def extract_roles(claims: Dict[str, Any], client_id: str) -> List[str]:
    """
    Collect realm and client roles from Keycloak claims.

    Keycloak stores roles in realm_access.roles and
    resource_access[client_id].roles.
    """
    roles = set(claims.get('realm_access', {}).get('roles', []))
    roles.update(claims.get('resource_access', {}).get(client_id, {}).get('roles', []))

    return sorted(
        r for r in roles
        if r not in INTERNAL_ROLES and not r.startswith('default-roles-')
    )


def session_from_claims(claims: Dict[str, Any], client_id: str) -> Session:
    """
    Build a Session from verified claims.

    Raises:
        JWTValidationError: If the token has no subject
    """
    sub = claims.get('sub')
    if not sub:
        raise JWTValidationError("Token has no subject")

    user_name = (
        claims.get('name')
        or claims.get('preferred_username')
        or claims.get('email')
        or sub
    )

    return Session(
        user_id=sub,
        user_name=user_name,
        email=claims.get('email'),
        roles=extract_roles(claims, client_id),
        expires_at=claims.get('exp'),
    )


def validate_token(token: str) -> Session:
    """
    Validate a Keycloak JWT token.

    Checks, in order: key ID present and known, issuer allowed,
    RS256 signature, expiry. Audience mismatches are logged only, since
    Keycloak puts the requesting client in 'azp' rather than 'aud'.

    Args:
        token: The JWT token string (without 'Bearer ' prefix)

    Returns:
        Session for the token's subject

    Raises:
        JWTValidationError: If validation fails
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
        kid = unverified_header.get('kid')

        if not kid:
            raise JWTValidationError("Token header missing 'kid'")

        jwk_data = get_jwks_cache().get_key(kid)
        if not jwk_data:
            raise JWTValidationError(f"Unknown key ID: {kid}")

        public_key = PyJWK.from_dict(jwk_data).key

        unverified_claims = jwt.decode(token, options={"verify_signature": False})
        token_issuer = unverified_claims.get('iss', '')

        valid_issuers = getattr(settings, 'KC_VALID_ISSUERS', [settings.KC_ISSUER])
        if token_issuer not in valid_issuers:
            logger.warning(f"Invalid issuer: {token_issuer}, expected one of: {valid_issuers}")
            raise JWTValidationError("Invalid token issuer")

        claims = jwt.decode(
            token,
            public_key,
            algorithms=['RS256'],
            issuer=token_issuer,
            options={
                'verify_signature': True,
                'verify_exp': True,
                'verify_iss': True,
                'verify_aud': False,  # checked against aud/azp below
            }
        )

        aud = claims.get('aud', [])
        if isinstance(aud, str):
            aud = [aud]
        azp = claims.get('azp', '')

        expected_audience = settings.KC_AUDIENCE
        if expected_audience not in aud and azp != expected_audience:
            logger.warning(
                f"Token audience mismatch. Expected: {expected_audience}, "
                f"Got aud: {aud}, azp: {azp}"
            )

        return session_from_claims(claims, expected_audience)

    except JWTValidationError:
        raise
    except jwt.ExpiredSignatureError:
        raise JWTValidationError("Token has expired")
    except jwt.InvalidIssuerError:
        raise JWTValidationError("Invalid token issuer")
    except jwt.InvalidTokenError as e:
        raise JWTValidationError(f"Invalid token: {e}")
    except Exception as e:
        logger.exception("Unexpected error during token validation")
        raise JWTValidationError(f"Token validation failed: {e}")
