from fastapi import APIRouter, Depends, HTTPException, status

from src.alwayscare.api.schemas import AuthRegisterRequest, AuthLoginRequest, AuthTokenResponse
from src.alwayscare.api.deps import get_auth_service
from src.alwayscare.services.auth_service import AuthService


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthTokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    req: AuthRegisterRequest,
    svc: AuthService = Depends(get_auth_service),
):
    try:
        return AuthTokenResponse(access_token=svc.register(email=req.email, password=req.password))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/login", response_model=AuthTokenResponse)
def login(
    req: AuthLoginRequest,
    svc: AuthService = Depends(get_auth_service),
):
    try:
        return AuthTokenResponse(access_token=svc.login(email=req.email, password=req.password))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
