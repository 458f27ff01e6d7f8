from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import AuthUser, AuthSession
from .. import repository

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	email: str
	name: Optional[str] = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(plain_password, hashed_password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	row = db.get(AuthUser, email.strip().lower())
	if row and verify_password(password, row.password_hash):
		return User(email=row.email, name=row.name)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	# Session id (jti) must exist server-side for the token to be accepted
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.email, "jti": session_id})
	db.add(AuthSession(session_id=session_id, email=user.email))
	db.commit()
	return Token(access_token=access_token)


def _user_from_token(token: str, db: Session) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		email: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if email is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	try:
		row = db.get(AuthSession, jti)
		if not row or row.email != email:
			raise credentials_exception
		row.last_activity_at = datetime.utcnow()
		db.commit()
		account = db.get(AuthUser, email)
	except SQLAlchemyError:
		# On DB errors, fail closed
		logger.exception("Session lookup failed")
		db.rollback()
		raise credentials_exception
	return User(email=email, name=account.name if account else None)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	return _user_from_token(token, db)


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
	if not token:
		return None
	try:
		return _user_from_token(token, db)
	except HTTPException:
		return None


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	email: Optional[str] = None
	password: Optional[str] = None
	name: Optional[str] = None


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	password = req.password or ""
	name = (req.name or "").strip() or None
	if not email or not password:
		raise HTTPException(status_code=400, detail="email and password are required")
	if "@" not in email or len(email) > 256:
		raise HTTPException(status_code=400, detail="email is invalid")
	if len(password) < 8:
		raise HTTPException(status_code=400, detail="password must be at least 8 characters")
	if db.get(AuthUser, email):
		raise HTTPException(status_code=409, detail="email already registered")
	db.add(AuthUser(email=email, name=name, password_hash=pwd_context.hash(password)))
	db.commit()
	first_name, _, last_name = (name or "").partition(" ")
	repository.create_or_update_user(db, email, first_name=first_name or None, last_name=last_name or None)
	logger.info("Registered %s", email)
	return {"ok": True}
