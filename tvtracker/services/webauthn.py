import logging
from dataclasses import dataclass

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url, options_to_json
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from tvtracker.config import settings
from tvtracker.models import Passkey, User

logger = logging.getLogger(__name__)


@dataclass
class RegisteredCredential:
    credential_id: str  # base64url
    public_key: bytes
    counter: int
    transports: list[str]


def _transports(values) -> list[AuthenticatorTransport]:
    transports = []
    for value in values or []:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug(f"Ignoring unknown authenticator transport {value}")
    return transports


def registration_options(user: User, existing: list[Passkey]) -> tuple[str, str]:
    """Build registration options. Returns (options JSON, base64url challenge)."""
    options = generate_registration_options(
        rp_id=settings.rp_id,
        rp_name=settings.rp_name,
        user_id=user.id.encode("utf-8"),
        user_name=user.email,
        user_display_name=user.email,
        attestation=AttestationConveyancePreference.NONE,
        exclude_credentials=[
            PublicKeyCredentialDescriptor(
                id=base64url_to_bytes(passkey.credential_id),
                transports=_transports(passkey.transports)
            )
            for passkey in existing
        ],
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED
        )
    )
    return options_to_json(options), bytes_to_base64url(options.challenge)


def verify_registration(credential: dict, challenge: str) -> RegisteredCredential:
    """Verify an attestation. Raises webauthn's InvalidRegistrationResponse on mismatch."""
    verification = verify_registration_response(
        credential=credential,
        expected_challenge=base64url_to_bytes(challenge),
        expected_rp_id=settings.rp_id,
        expected_origin=settings.rp_origin
    )
    response = credential.get("response") or {}
    return RegisteredCredential(
        credential_id=bytes_to_base64url(verification.credential_id),
        public_key=verification.credential_public_key,
        counter=verification.sign_count,
        transports=[t.value for t in _transports(response.get("transports"))]
    )


def authentication_options() -> tuple[str, str]:
    """Build login options without an allow list (discoverable credentials)."""
    options = generate_authentication_options(
        rp_id=settings.rp_id,
        allow_credentials=[],
        user_verification=UserVerificationRequirement.PREFERRED
    )
    return options_to_json(options), bytes_to_base64url(options.challenge)


def verify_authentication(credential: dict, challenge: str, passkey: Passkey) -> int:
    """
    Verify an assertion against a stored passkey and return the new counter.

    Raises webauthn's InvalidAuthenticationResponse, also when the counter did
    not increase (a sign of a cloned authenticator).
    """
    verification = verify_authentication_response(
        credential=credential,
        expected_challenge=base64url_to_bytes(challenge),
        expected_rp_id=settings.rp_id,
        expected_origin=settings.rp_origin,
        credential_public_key=passkey.public_key,
        credential_current_sign_count=passkey.counter
    )
    return verification.new_sign_count
