from fastapi import Depends, Header, HTTPException, status


def get_acting_user_id(x_user_id: int | None = Header(default=None, alias="X-User-Id")) -> int | None:
    """User id resolved by the upstream auth layer; absent for system callers."""
    return x_user_id


def require_acting_user_id(user_id: int | None = Depends(get_acting_user_id)) -> int:
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return user_id
