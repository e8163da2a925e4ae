import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends, Form, Query
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse

from tvtracker.auth import (
    clear_passkey_challenge,
    create_user_session,
    get_passkey_challenge,
    get_user_id,
    logout,
    require_user,
    set_passkey_challenge,
)
from tvtracker.config import is_enabled
from tvtracker.database import get_session
from tvtracker.dependencies import require_flag
from tvtracker.models import User
from tvtracker.services import webauthn
from tvtracker.services.invites import redeem_invite_code
from tvtracker.services.passkeys import (
    create_passkey,
    get_passkey_by_credential_id,
    get_passkeys_by_user_id,
    update_passkey_counter,
)
from tvtracker.services.users import create_user, get_user_by_email, verify_login
from tvtracker.templating import templates
from tvtracker.utils import safe_redirect, sanitize_input, validate_and_sanitize_email

logger = logging.getLogger(__name__)

router = APIRouter()

AFTER_LOGIN = "/tv"


def _form_errors(**errors) -> dict:
    base = {"email": None, "password": None, "invite": None}
    base.update(errors)
    return base


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, redirectTo: Optional[str] = Query(None)):
    if get_user_id(request):
        return RedirectResponse(url="/", status_code=303)

    return templates.TemplateResponse(
        request,
        "login.html",
        {"redirect_to": redirectTo or "", "errors": _form_errors(), "email": ""}
    )


@router.post("/login")
async def login(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    redirectTo: str = Form(""),
    session: AsyncSession = Depends(get_session)
):
    redirect_to = safe_redirect(redirectTo, AFTER_LOGIN)
    sanitized = validate_and_sanitize_email(email)

    user = None
    if sanitized and password:
        user = await verify_login(session, sanitized, password)

    if not user:
        logger.info("Login failed")
        message = "Invalid email or password"
        return templates.TemplateResponse(
            request,
            "login.html",
            {
                "redirect_to": redirectTo,
                "errors": _form_errors(email=message, password=message),
                "email": email,
            },
            status_code=400
        )

    logger.info(f"User {user.id} logged in with password")
    return create_user_session(request, user.id, redirect_to)


@router.get("/join", response_class=HTMLResponse)
async def join_page(request: Request, redirectTo: Optional[str] = Query(None)):
    if get_user_id(request):
        return RedirectResponse(url="/", status_code=303)

    return templates.TemplateResponse(
        request,
        "join.html",
        {"redirect_to": redirectTo or "", "errors": _form_errors(), "email": ""}
    )


@router.post("/join")
async def join(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    invite: str = Form(""),
    redirectTo: str = Form(""),
    session: AsyncSession = Depends(get_session)
):
    """Create an account. While signup is disabled an invite code is required."""
    redirect_to = safe_redirect(redirectTo, AFTER_LOGIN)

    def invalid(**errors):
        return templates.TemplateResponse(
            request,
            "join.html",
            {"redirect_to": redirectTo, "errors": _form_errors(**errors), "email": email},
            status_code=400
        )

    sanitized = validate_and_sanitize_email(email)
    if not sanitized:
        return invalid(email="Email is invalid")

    if not password:
        return invalid(password="Password is required")

    if len(password) < 8:
        return invalid(password="Password is too short")

    if await get_user_by_email(session, sanitized):
        return invalid(email="A user already exists with this email")

    if is_enabled("signup_disabled"):
        invite = sanitize_input(invite)
        if not invite:
            return invalid(invite="Invite code is required")

        if not await redeem_invite_code(session, invite):
            return invalid(invite="Invite code is invalid")

    user = await create_user(session, sanitized, password)
    return create_user_session(request, user.id, redirect_to)


@router.post("/logout")
async def logout_action(request: Request):
    return logout(request)


@router.get("/logout")
async def logout_page():
    return RedirectResponse(url="/", status_code=303)


def _options_response(options_json: str) -> Response:
    return Response(content=options_json, media_type="application/json")


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.get("/passkey/register-options", dependencies=[Depends(require_flag("passkey_registration"))])
async def passkey_register_options(
    request: Request,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_session)
):
    """Registration options for the browser, excluding already registered credentials."""
    existing = await get_passkeys_by_user_id(session, user.id)
    options_json, challenge = webauthn.registration_options(user, existing)
    set_passkey_challenge(request, challenge)
    return _options_response(options_json)


@router.post("/passkey/register-verify", dependencies=[Depends(require_flag("passkey_registration"))])
async def passkey_register_verify(
    request: Request,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_session)
):
    challenge = get_passkey_challenge(request)
    if not challenge:
        return JSONResponse({"error": "No challenge found"}, status_code=400)

    body = await _read_json(request)
    credential = body.get("credential")
    name = body.get("name")

    if not isinstance(name, str) or not name.strip():
        return JSONResponse({"error": "Passkey name is required"}, status_code=400)

    if not isinstance(credential, dict):
        return JSONResponse({"error": "Invalid credential"}, status_code=400)

    try:
        registered = webauthn.verify_registration(credential, challenge)
    except InvalidRegistrationResponse as e:
        logger.warning(f"Passkey registration rejected: {e}")
        return JSONResponse({"error": "Verification failed"}, status_code=400)
    except Exception:
        logger.exception("Passkey registration verification error")
        return JSONResponse({"error": "Failed to verify passkey"}, status_code=500)

    try:
        await create_passkey(
            session,
            user_id=user.id,
            credential_id=registered.credential_id,
            public_key=registered.public_key,
            counter=registered.counter,
            transports=registered.transports,
            name=name.strip()
        )
    except Exception:
        await session.rollback()
        logger.exception("Storing passkey failed")
        return JSONResponse({"error": "Failed to verify passkey"}, status_code=500)

    clear_passkey_challenge(request)
    return {"verified": True}


@router.get("/passkey/login-options")
async def passkey_login_options(request: Request):
    options_json, challenge = webauthn.authentication_options()
    set_passkey_challenge(request, challenge)
    return _options_response(options_json)


@router.post("/passkey/login-verify")
async def passkey_login_verify(
    request: Request,
    session: AsyncSession = Depends(get_session)
):
    """Check an assertion and log the owner of the passkey in."""
    challenge = get_passkey_challenge(request)
    if not challenge:
        return JSONResponse({"error": "No challenge found"}, status_code=400)

    body = await _read_json(request)
    credential = body.get("credential")
    if not isinstance(credential, dict) or not credential.get("id"):
        return JSONResponse({"error": "Invalid credential"}, status_code=400)

    redirect_to = safe_redirect(body.get("redirectTo"), AFTER_LOGIN)

    try:
        passkey = await get_passkey_by_credential_id(session, credential["id"])
        if not passkey:
            return JSONResponse({"error": "Passkey not found"}, status_code=404)

        try:
            new_counter = webauthn.verify_authentication(credential, challenge, passkey)
        except InvalidAuthenticationResponse as e:
            logger.warning(f"Passkey authentication rejected: {e}")
            return JSONResponse({"error": "Verification failed"}, status_code=400)

        await update_passkey_counter(session, passkey.id, new_counter)
    except Exception:
        logger.exception("Passkey authentication error")
        return JSONResponse({"error": "Failed to authenticate passkey"}, status_code=500)

    logger.info(f"User {passkey.user_id} logged in with passkey {passkey.id}")
    create_user_session(request, passkey.user_id, redirect_to)
    return {"verified": True, "redirectTo": redirect_to}
