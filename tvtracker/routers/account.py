import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends, Form, HTTPException, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.auth import get_user_id, logout, require_user, require_user_id
from tvtracker.database import get_session
from tvtracker.dependencies import require_flag
from tvtracker.exceptions import PasswordRemovalError, PasswordResetExpiredError
from tvtracker.models import User
from tvtracker.services.passkeys import delete_passkey, get_passkeys_by_user_id, update_passkey_name
from tvtracker.services.passwords import trigger_password_reset
from tvtracker.services.users import (
    change_password,
    delete_user_by_id,
    get_user_by_id,
    has_password,
    regenerate_plex_token,
    remove_password,
    verify_login,
)
from tvtracker.templating import templates
from tvtracker.utils import get_password_validation_error, sanitize_input, validate_and_sanitize_email

logger = logging.getLogger(__name__)

router = APIRouter()


def _password_errors(**errors) -> dict:
    base = {
        "password": None,
        "new_password": None,
        "confirm_password": None,
        "token": None,
        "generic": None,
    }
    base.update(errors)
    return base


async def _render_account(
    request: Request,
    session: AsyncSession,
    user: User,
    error: Optional[str] = None,
    status_code: int = 200
):
    return templates.TemplateResponse(
        request,
        "account.html",
        {
            "user": user,
            "webhook_url": f"{str(request.base_url).rstrip('/')}/plex/{user.plex_token}",
            "passkeys": await get_passkeys_by_user_id(session, user.id),
            "has_password": await has_password(session, user.id),
            "error": error,
        },
        status_code=status_code
    )


@router.get("/account", response_class=HTMLResponse)
async def account_page(
    request: Request,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_session)
):
    """Account overview: plex webhook, passkeys and password settings."""
    return await _render_account(request, session, user)


@router.post("/account/plex-token", dependencies=[Depends(require_flag("plex"))])
async def regenerate_plex_token_action(
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    await regenerate_plex_token(session, user_id)
    logger.info(f"Regenerated plex token of user {user_id}")
    return RedirectResponse(url="/account", status_code=303)


@router.post("/account/password/remove")
async def remove_password_action(
    request: Request,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_session)
):
    try:
        await remove_password(session, user.id)
    except PasswordRemovalError:
        return await _render_account(
            request, session, user,
            error="Register a passkey before removing your password.",
            status_code=400
        )
    return RedirectResponse(url="/account", status_code=303)


@router.post("/account/passkeys/{passkey_id}/rename")
async def rename_passkey_action(
    passkey_id: str,
    name: str = Form(""),
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    name = sanitize_input(name)
    if name and not await update_passkey_name(session, passkey_id, user_id, name):
        raise HTTPException(status_code=404, detail="Passkey not found")
    return RedirectResponse(url="/account", status_code=303)


@router.post("/account/passkeys/{passkey_id}/delete")
async def delete_passkey_action(
    passkey_id: str,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    if not await delete_passkey(session, passkey_id, user_id):
        raise HTTPException(status_code=404, detail="Passkey not found")
    logger.info(f"Deleted passkey {passkey_id} of user {user_id}")
    return RedirectResponse(url="/account", status_code=303)


@router.get("/deletion", response_class=HTMLResponse, dependencies=[Depends(require_flag("delete_account"))])
async def deletion_page(request: Request, user_id: str = Depends(require_user_id)):
    return templates.TemplateResponse(request, "deletion.html", {"error": None})


@router.post("/deletion", dependencies=[Depends(require_flag("delete_account"))])
async def deletion(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    """Delete the account with all its data and end the session."""
    try:
        await delete_user_by_id(session, user_id)
    except Exception:
        logger.exception(f"Deleting user {user_id} failed")
        await session.rollback()
        return templates.TemplateResponse(
            request,
            "deletion.html",
            {"error": "Could not delete user. Please try again."},
            status_code=500
        )

    return logout(request)


@router.get("/password/reset", response_class=HTMLResponse)
async def password_reset_page(request: Request):
    # logged in users change their password directly
    if get_user_id(request):
        return RedirectResponse(url="/password/change", status_code=303)

    return templates.TemplateResponse(
        request, "password_reset.html", {"done": False, "error": None, "email": ""}
    )


@router.post("/password/reset")
async def password_reset(
    request: Request,
    email: str = Form(""),
    session: AsyncSession = Depends(get_session)
):
    sanitized = validate_and_sanitize_email(email)
    if not sanitized:
        return templates.TemplateResponse(
            request,
            "password_reset.html",
            {"done": False, "error": "Email is invalid", "email": email},
            status_code=400
        )

    await trigger_password_reset(session, sanitized)
    return templates.TemplateResponse(
        request, "password_reset.html", {"done": True, "error": None, "email": sanitized}
    )


@router.get("/password/change", response_class=HTMLResponse, dependencies=[Depends(require_flag("password_change"))])
async def password_change_page(request: Request, token: Optional[str] = Query(None)):
    # without a reset token only logged in users may change their password
    if not token:
        await require_user_id(request)

    return templates.TemplateResponse(
        request,
        "password_change.html",
        {"token": token or "", "done": False, "errors": _password_errors()}
    )


@router.post("/password/change", dependencies=[Depends(require_flag("password_change"))])
async def password_change(
    request: Request,
    password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
    token: str = Form(""),
    session: AsyncSession = Depends(get_session)
):
    """
    Change a password either with a reset token from the mail or, for a
    logged in user, by confirming the current password.
    """
    def render(status_code: int = 400, done: bool = False, **errors):
        return templates.TemplateResponse(
            request,
            "password_change.html",
            {"token": token, "done": done, "errors": _password_errors(**errors)},
            status_code=status_code
        )

    if not new_password:
        return render(new_password="New password is required")

    password_error = get_password_validation_error(new_password)
    if password_error:
        return render(new_password=password_error)

    if not confirm_password:
        return render(confirm_password="Password confirmation is required")

    if confirm_password != new_password:
        return render(confirm_password="Passwords do not match")

    email = None
    if not token:
        user_id = await require_user_id(request)
        user = await get_user_by_id(session, user_id)
        if not user:
            return logout(request)

        # passkey only users set a password without confirming an old one
        if await has_password(session, user.id):
            if not password:
                return render(password="Current password is required.")

            if not await verify_login(session, user.email, password):
                return render(password="Current password is wrong.")

        email = user.email

    try:
        await change_password(session, email, new_password, token or None)
    except PasswordResetExpiredError:
        return render(token="Password reset link expired. Please try again.")
    except Exception:
        logger.exception("Changing password failed")
        return render(status_code=500, generic="Something went wrong. Please try again.")

    return render(status_code=200, done=True)
