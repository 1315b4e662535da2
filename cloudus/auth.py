from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from cloudus.config import Settings, get_settings


def verify_token(authorization: str = Header(None), settings: Settings = Depends(get_settings)):
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer" or not settings.jwt_secret:
            raise ValueError()
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
