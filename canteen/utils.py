# canteen/utils.py
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional, Union
import math
import re

ROLES = ("student", "staff", "admin")
SELF_REGISTER_ROLES = ("student", "staff")
MEALS = ("breakfast", "lunch", "dinner")

FALLBACK_IMAGE = "/images/cart.png"

# верхняя граница колонки INTEGER в PostgreSQL
MAX_INT = 2**31 - 1

_LEADING_INT_REGEX = re.compile(r"^\s*([+-]?\d+)")


def coerce_int(value: Any, default: int = 0) -> int:
    """
    Приводит значение к целому числу по правилам parseInt:
    берётся ведущая целая часть строки, остальное отбрасывается.
    Пустое или нечисловое значение превращается в default.
    Результат ограничивается диапазоном [-MAX_INT, MAX_INT].
    Примеры: "3" -> 3, " 2.9" -> 2, "4шт" -> 4, "abc" -> 0, None -> 0
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return default
        result = int(value)
    else:
        match = _LEADING_INT_REGEX.match(str(value))
        if not match:
            return default
        digits = match.group(1)
        try:
            result = int(digits)
        except ValueError:
            # слишком длинная строка цифр
            result = -MAX_INT if digits.startswith("-") else MAX_INT
    return max(-MAX_INT, min(MAX_INT, result))


def parse_positive_id(value: Union[str, int, None]) -> Optional[int]:
    """
    Возвращает положительный идентификатор или None, если он некорректен
    или не помещается в колонку INTEGER.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        int_value = int(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if int_value <= 0 or int_value > MAX_INT:
        return None
    return int_value


def tomorrow(today: Optional[date] = None) -> date:
    return (today or date.today()) + timedelta(days=1)


def parse_selection_date(
    value: Optional[str], today: Optional[date] = None
) -> date:
    """
    Разбирает дату заказа.

    Пустое значение означает "завтра" относительно часов сервера.
    Принимается формат YYYY-MM-DD, а также полная ISO-метка времени,
    от которой берётся только дата.

    Raises:
        ValueError: если дата указана, но не распознана
    """
    if value is None:
        return tomorrow(today)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return tomorrow(today)
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.rstrip("Z")).date()
    except ValueError:
        raise ValueError(f"invalid date: {text!r}") from None


def validate_registration(
    username: Any, password: Any, role: Any
) -> tuple[bool, str]:
    """Проверяет поля регистрации: все обязательны, роль только student/staff."""
    if not username or not password or not role:
        return False, "missing fields"
    if not all(isinstance(v, str) for v in (username, password, role)):
        return False, "missing fields"
    if role not in SELF_REGISTER_ROLES:
        return False, "invalid role"
    return True, ""


def validate_login(username: Any, password: Any, role: Any) -> bool:
    """Все три поля входа обязательны и должны быть строками."""
    return all(isinstance(v, str) and v for v in (username, password, role))


def resolve_image_path(img: Optional[str], static_root: Union[str, Path]) -> str:
    """
    Подбирает существующий файл картинки в папке статики.

    Ожидается путь вида "/images/poha.jpeg". Если файла нет, пробуем
    вариант с другим расширением (.jpeg <-> .jpg), иначе отдаём заглушку.
    """
    if not img:
        return FALLBACK_IMAGE
    root = Path(static_root)
    rel = Path(img.lstrip("/"))
    if (root / rel).is_file():
        return "/" + rel.as_posix()

    other_ext = ".jpg" if rel.suffix.lower() == ".jpeg" else ".jpeg"
    for candidate in (
        rel.with_suffix(other_ext),
        rel.with_suffix(".jpg"),
        rel.with_suffix(".jpeg"),
    ):
        if (root / candidate).is_file():
            return "/" + candidate.as_posix()

    return FALLBACK_IMAGE
