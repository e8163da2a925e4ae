import json

from tvtracker.services import webauthn
from tvtracker.services.passkeys import (
    create_passkey,
    delete_passkey,
    get_passkey_by_credential_id,
    get_passkeys_by_user_id,
    update_passkey_counter,
    update_passkey_name,
)
from tvtracker.services.users import create_user


async def test_passkey_crud_is_scoped_to_owner(session, user):
    other = await create_user(session, "other@example.com", "another password")
    passkey = await create_passkey(session, user.id, "Y3JlZC0x", b"public-key", 0, ["internal"], "Laptop")

    assert (await get_passkey_by_credential_id(session, "Y3JlZC0x")).id == passkey.id
    assert await get_passkey_by_credential_id(session, "unknown") is None

    assert not await update_passkey_name(session, passkey.id, other.id, "Stolen")
    assert await update_passkey_name(session, passkey.id, user.id, "Work laptop")

    assert not await delete_passkey(session, passkey.id, other.id)
    [stored] = await get_passkeys_by_user_id(session, user.id)
    assert stored.name == "Work laptop"
    assert stored.transports == ["internal"]

    assert await delete_passkey(session, passkey.id, user.id)
    assert await get_passkeys_by_user_id(session, user.id) == []


async def test_update_counter_records_last_use(session, user):
    passkey = await create_passkey(session, user.id, "Y3JlZC0y", b"public-key", 1, [], "Phone")
    assert passkey.last_used_at is None

    await update_passkey_counter(session, passkey.id, 5)

    [stored] = await get_passkeys_by_user_id(session, user.id)
    assert stored.counter == 5
    assert stored.last_used_at is not None


async def test_registration_options_exclude_existing_credentials(session, user):
    existing = await create_passkey(session, user.id, "Y3JlZC0z", b"public-key", 0, ["usb", "bogus"], "Key")

    options_json, challenge = webauthn.registration_options(user, [existing])
    options = json.loads(options_json)

    assert options["challenge"] == challenge
    assert options["rp"]["id"] == "localhost"
    assert options["user"]["name"] == user.email
    assert options["attestation"] == "none"
    assert options["authenticatorSelection"]["residentKey"] == "preferred"
    assert [c["id"] for c in options["excludeCredentials"]] == ["Y3JlZC0z"]
    assert options["excludeCredentials"][0]["transports"] == ["usb"]


def test_authentication_options_have_no_allow_list():
    options_json, challenge = webauthn.authentication_options()
    options = json.loads(options_json)

    assert options["challenge"] == challenge
    assert options["rpId"] == "localhost"
    assert options.get("allowCredentials", []) == []
    assert options["userVerification"] == "preferred"
