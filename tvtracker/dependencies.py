from fastapi import HTTPException

from tvtracker.config import is_enabled


def require_flag(flag: str):
    """Dependency factory: the route answers 404 while the feature flag is off."""
    async def dependency():
        if not is_enabled(flag):
            raise HTTPException(status_code=404, detail="Not Found")
    return dependency
