from passlib.context import CryptContext

from config import get_settings

pwd_context = CryptContext(schemes=get_settings().get_password_schemes_list(), deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)
