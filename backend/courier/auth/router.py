"""Auth router for account endpoints.

Endpoints:
    POST /api/signup - Create an account
    POST /api/login  - Exchange credentials for a bearer token
    GET  /api/users  - List users (password hashes excluded)
"""
import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from courier.errors import InvalidCredentials, PersistenceError, UserAlreadyExists, UserNotFound

from .schemas import Credentials, LoginResponse
from .service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def _service() -> UserService:
    return UserService.get_instance()


def _missing_fields(body: Credentials) -> bool:
    return not body.email or not body.email.strip() or not body.password


@router.post("/signup", status_code=201)
async def signup(body: Credentials) -> JSONResponse:
    """Create a user account.

    Returns:
        201 on success, 400 if email or password is missing,
        409 if the email is already registered.
    """
    if _missing_fields(body):
        return JSONResponse(
            {"message": "Email and password are required."}, status_code=400
        )

    try:
        # bcrypt hashing blocks; run it off the event loop.
        await asyncio.to_thread(_service().signup, body.email, body.password)
    except UserAlreadyExists:
        return JSONResponse({"message": "User already exists."}, status_code=409)
    except PersistenceError:
        return JSONResponse({"message": "Error creating user."}, status_code=500)

    return JSONResponse({"message": "User created successfully."}, status_code=201)


@router.post("/login")
async def login(body: Credentials) -> JSONResponse:
    """Check credentials and return a token plus the user's identity.

    Returns:
        200 with {token, userId}; 404 for an unknown user; 401 for a wrong password.
    """
    if _missing_fields(body):
        return JSONResponse(
            {"message": "Email and password are required."}, status_code=400
        )

    try:
        token, user_id = await asyncio.to_thread(
            _service().login, body.email, body.password
        )
    except UserNotFound:
        return JSONResponse({"message": "User not found."}, status_code=404)
    except InvalidCredentials:
        return JSONResponse({"message": "Invalid password."}, status_code=401)

    logger.info("[Auth] User %s logged in", user_id)
    return JSONResponse(LoginResponse(token=token, userId=user_id).model_dump())


@router.get("/users")
async def list_users() -> JSONResponse:
    """List all users without their password hashes."""
    try:
        users = await asyncio.to_thread(_service().list_users)
    except PersistenceError:
        return JSONResponse({"message": "Error fetching users."}, status_code=500)
    return JSONResponse([u.model_dump(mode="json") for u in users])
