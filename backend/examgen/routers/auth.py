from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from ..settings import settings
from ..db import get_db
from ..models import User

router = APIRouter(prefix="/api", tags=["auth"])
logger = logging.getLogger(__name__)

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class Caller(BaseModel):
	"""Resolved identity handed to every other router."""
	id: int
	role: str

	@property
	def is_teacher(self) -> bool:
		return self.role == "teacher"


class UserOut(BaseModel):
	id: int
	name: str
	email: str
	role: str


class SignupRequest(BaseModel):
	name: str
	email: str
	password: str
	role: Literal["teacher", "student"]


class LoginRequest(BaseModel):
	email: str
	password: str


def hash_password(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')[:72]
	return pwd_context.hash(password_bytes.decode('utf-8', errors='ignore'))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	password_bytes = plain_password.encode('utf-8')[:72]
	return pwd_context.verify(password_bytes.decode('utf-8', errors='ignore'), hashed_password)


def _user_out(user: User) -> UserOut:
	return UserOut(id=user.id, name=user.name, email=user.email, role=user.role)


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


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	user = db.query(User).filter(User.email == email).first()
	if user and verify_password(password, user.password_hash):
		return user
	return None


@router.post("/signup", status_code=201)
async def signup(req: SignupRequest, db: Session = Depends(get_db)):
	name = req.name.strip()
	email = req.email.strip().lower()
	if not name or not email or not req.password:
		raise HTTPException(status_code=400, detail="Name, email, password, and role required")
	if db.query(User).filter(User.email == email).first():
		raise HTTPException(status_code=409, detail="Email already registered")
	user = User(name=name, email=email, password_hash=hash_password(req.password), role=req.role)
	db.add(user)
	try:
		db.commit()
	except IntegrityError:
		db.rollback()
		raise HTTPException(status_code=409, detail="Email already registered")
	db.refresh(user)
	logger.info("User created successfully: %s", email)
	return {
		"message": "Account created successfully",
		"token": create_access_token({"sub": str(user.id)}),
		"user": _user_out(user),
	}


@router.post("/login")
async def login(req: LoginRequest, db: Session = Depends(get_db)):
	user = authenticate_user(db, req.email.strip().lower(), req.password)
	if not user:
		raise HTTPException(status_code=401, detail="Invalid credentials")
	return {"user": _user_out(user), "token": create_access_token({"sub": str(user.id)})}


@router.post("/token", response_model=Token)
async def token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username.strip().lower(), form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	return Token(access_token=create_access_token({"sub": str(user.id)}))


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Caller:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		subject: str | None = payload.get("sub")
		if subject is None:
			raise credentials_exception
		user_id = int(subject)
	except (JWTError, ValueError):
		logger.warning("Invalid token presented")
		raise credentials_exception
	user = db.get(User, user_id)
	if user is None:
		logger.warning("User not found for ID: %s", user_id)
		raise HTTPException(status_code=401, detail="User not found")
	return Caller(id=user.id, role=user.role)


def require_teacher(caller: Caller, action: str) -> None:
	if not caller.is_teacher:
		raise HTTPException(status_code=403, detail=f"Only teachers can {action}")


@router.get("/check-auth")
async def check_auth(caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	user = db.get(User, caller.id)
	return {"authenticated": True, "user": _user_out(user)}
