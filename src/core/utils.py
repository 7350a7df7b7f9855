import base64
import hashlib
import logging

from src.core.config import LOG_LEVEL

K8S_MAX_NAME_LENGTH = 63

_FNV32_OFFSET_BASIS = 0x811C9DC5
_FNV32_PRIME = 0x01000193


def setup_logger(logger_name: str) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(LOG_LEVEL)
    logger.propagate = False

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                                  datefmt='%d-%b-%y %H:%M:%S')
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level=LOG_LEVEL)
    console_handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(console_handler)

    return logger


def fnv32a(data: bytes) -> int:
    value = _FNV32_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF

    return value


def hash_as_number(*ids: str) -> int:
    """Stable, non-cryptographic hash of the given ids, used for deterministic 'random' picks."""
    return fnv32a(''.join(ids).encode('utf-8'))


def k8s_name_hash(*ids: str) -> str:
    """
    Generates a name usable for kubernetes objects out of the given ids.

    The ids are joined with '/', hashed with SHA-1 and base32 encoded (lowercase, without padding),
    so the result only contains characters which are valid in kubernetes object names.
    """
    digest = hashlib.sha1('/'.join(ids).encode('utf-8')).digest()  # noqa: S324 (not used for security)

    return base64.b32encode(digest).decode('ascii').lower().rstrip('=')


def shorten(name: str, max_length: int = K8S_MAX_NAME_LENGTH) -> str:
    if len(name) <= max_length:
        return name

    suffix = f'--{fnv32a(name.encode("utf-8")):x}'

    return name[:max_length - len(suffix)] + suffix


def prefix_with_namespace(namespace: str, name: str) -> str:
    return shorten(f'{namespace or "default"}--{name}')
