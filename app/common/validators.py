"""
Validadores de entrada compartidos por los servicios
"""
import re
from typing import Union
from uuid import UUID

from app.common.exceptions import InvalidArgumentError

UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
    re.IGNORECASE
)


def is_valid_uuid(value) -> bool:
    """
    Valida un identificador UUID en formato canónico con guiones.
    Acepta instancias de UUID o cadenas de 36 caracteres.
    """
    if isinstance(value, UUID):
        return True
    if not isinstance(value, str):
        return False
    return bool(UUID_PATTERN.match(value.strip()))


def parse_uuid(value: Union[str, UUID], label: str) -> UUID:
    """Convierte un identificador a UUID o lanza InvalidArgumentError("Invalid <label> format")."""
    if not is_valid_uuid(value):
        raise InvalidArgumentError(f"Invalid {label} format")
    if isinstance(value, UUID):
        return value
    return UUID(value.strip())


def is_valid_bin_count(value, maximum: int) -> bool:
    """Entero (no bool) entre 0 y ``maximum``, ambos incluidos."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 <= value <= maximum
