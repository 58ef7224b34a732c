from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel

from compliance_app.exceptions import UnauthenticatedError
from compliance_app.models.users import AuthUser, UserCreate, UserLogin
from compliance_app.routes.responses import failure, success
from compliance_app.services.identity_service import IdentityGateway, user_info

router = APIRouter(tags=["auth"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class RefreshRequest(BaseModel):
    refresh_token: str


def get_identity_gateway() -> IdentityGateway:
    return IdentityGateway()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    gateway: IdentityGateway = Depends(get_identity_gateway),
) -> AuthUser:
    try:
        return await gateway.restore(token)
    except UnauthenticatedError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.get("/me")
async def get_current_user_details(
    current_user: AuthUser = Depends(get_current_user),
    gateway: IdentityGateway = Depends(get_identity_gateway),
):
    """
    Get current authenticated user details.
    Requires a valid access token.
    """
    try:
        user_doc = await gateway.users.find_one({"_id": current_user.id})
        if not user_doc:
            return failure(UnauthenticatedError("User not found"))
        return success(user_info(user_doc))
    except Exception as e:
        return failure(e)


# -----------------------
# Routes
# -----------------------
@router.post("/register")
async def register(user: UserCreate, gateway: IdentityGateway = Depends(get_identity_gateway)):
    """Create the account and its profile, and sign the new user in."""
    try:
        result = await gateway.sign_up(user.email, user.password)
        return success(result, status_code=status.HTTP_201_CREATED)
    except Exception as e:
        return failure(e)


@router.post("/login")
async def login(credentials: UserLogin, gateway: IdentityGateway = Depends(get_identity_gateway)):
    try:
        return success(await gateway.sign_in(credentials.email, credentials.password))
    except Exception as e:
        return failure(e)


@router.post("/logout")
async def logout(
    token: str = Depends(oauth2_scheme),
    gateway: IdentityGateway = Depends(get_identity_gateway),
):
    """Revoke every token issued to the user so far."""
    try:
        await gateway.restore(token)
        await gateway.sign_out()
        return success({"signed_out": True})
    except Exception as e:
        return failure(e)


@router.post("/refresh")
async def refresh_token(req: RefreshRequest, gateway: IdentityGateway = Depends(get_identity_gateway)):
    try:
        return success(await gateway.refresh(req.refresh_token))
    except Exception as e:
        return failure(e)
