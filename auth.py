"""HTTP Basic authentication for the whole API."""
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

REALM = "NAS Gallery"
PLAIN_PREFIX = "plain:"

basic = HTTPBasic(auto_error=False)


def _deny() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def check_credentials(username: str, password: str, user: str, stored: str) -> bool:
    """Compare credentials against the configured user and password hash."""
    if not secrets.compare_digest(username.encode(), user.encode()):
        return False
    if stored.startswith(PLAIN_PREFIX):
        expected = stored[len(PLAIN_PREFIX):]
        return secrets.compare_digest(password.encode(), expected.encode())
    # TODO: accept bcrypt hashes in BASIC_PASS_HASH; until then only plain: works
    return False


def require_basic_auth(
    request: Request, credentials: Optional[HTTPBasicCredentials] = Depends(basic)
) -> str:
    """Dependency rejecting requests without valid credentials."""
    settings = request.app.state.services.settings
    if credentials is None or not check_credentials(
        credentials.username,
        credentials.password,
        settings.basic_user,
        settings.basic_pass_hash,
    ):
        raise _deny()
    return credentials.username
