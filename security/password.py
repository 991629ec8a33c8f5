from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX = 72


def hash_password(password: str) -> str:
    return _pwd_context.hash(password[:_BCRYPT_MAX])


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return _pwd_context.verify(password[:_BCRYPT_MAX], password_hash)
