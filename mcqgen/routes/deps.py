from typing import Optional
import os

from fastapi import Header, HTTPException


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    expected = os.getenv("ADMIN_TOKEN")
    if expected and x_admin_token != expected:
        raise HTTPException(status_code=401, detail="unauthorized")
