# canteen/services.py
from typing import List, Dict, Any, Optional
from datetime import date
from flask import current_app
from sqlalchemy import (
    BigInteger,
    and_,
    case,
    cast,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from canteen.models import User, MenuItem, Selection
from canteen.utils import MAX_INT, resolve_image_path

_SELECTION_KEY = ["user_id", "menu_item_id", "selected_for_date"]


def _passwords_hashed() -> bool:
    return bool(current_app.config.get("HASH_PASSWORDS"))


class UserService:
    """Сервис регистрации и проверки пользователей"""

    @staticmethod
    def make_password(raw_password: str) -> str:
        """Возвращает значение для хранения: bcrypt-хеш или сам пароль."""
        from canteen import bcrypt

        if _passwords_hashed():
            return bcrypt.generate_password_hash(raw_password).decode("utf-8")
        return raw_password

    @staticmethod
    def check_password(user: User, raw_password: str) -> bool:
        from canteen import bcrypt

        if _passwords_hashed():
            try:
                return bcrypt.check_password_hash(user.password, raw_password)
            except ValueError:
                # в базе лежит не bcrypt-хеш
                return False
        return user.password == raw_password

    @staticmethod
    def register(username: str, password: str, role: str) -> tuple[bool, str]:
        """Создаёт пользователя. Имя пользователя должно быть уникальным."""
        from canteen import db

        if User.query.filter_by(username=username).first():
            return False, "user exists"

        user = User(
            username=username,
            password=UserService.make_password(password),
            role=role,
        )
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            # параллельная регистрация с тем же именем
            db.session.rollback()
            return False, "user exists"
        return True, ""

    @staticmethod
    def authenticate(
        username: str, password: str, role: str
    ) -> Optional[User]:
        """Ищет пользователя с точным совпадением имени, пароля и роли."""
        user = User.query.filter_by(username=username, role=role).first()
        if user and UserService.check_password(user, password):
            return user
        return None


class MenuService:
    """Сервис для работы с меню"""

    @staticmethod
    def get_item(menu_item_id: int) -> Optional[MenuItem]:
        from canteen import db

        return db.session.get(MenuItem, menu_item_id)

    @staticmethod
    def get_grouped_menu(static_root: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Возвращает меню, сгруппированное по приёмам пищи.
        Пути к картинкам проверяются по папке статики.
        """
        items = MenuItem.query.order_by(MenuItem.meal, MenuItem.name).all()
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for item in items:
            grouped.setdefault(item.meal, []).append(
                {
                    "id": item.id,
                    "name": item.name,
                    "meal": item.meal,
                    "img": resolve_image_path(item.img, static_root),
                }
            )
        return grouped


class SelectionService:
    """
    Сервис заказов: поддерживает не более одной строки на тройку
    (пользователь, блюдо, дата) и не хранит строки с количеством <= 0.

    Каждая операция выполняется одной транзакцией на встроенном upsert
    (INSERT ... ON CONFLICT DO UPDATE), поэтому параллельные запросы
    по одной тройке выполняются последовательно и не теряют обновлений.
    Количество при сложении ограничено сверху значением MAX_INT.
    """

    @staticmethod
    def _insert():
        from canteen import db

        dialect = db.engine.dialect.name
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise NotImplementedError(
                f"upsert is not supported for dialect {dialect!r}"
            )
        return insert(Selection.__table__)

    @staticmethod
    def _triple(user_id: int, menu_item_id: int, selected_for_date: date):
        return and_(
            Selection.user_id == user_id,
            Selection.menu_item_id == menu_item_id,
            Selection.selected_for_date == selected_for_date,
        )

    @staticmethod
    def _current_quantity(
        user_id: int, menu_item_id: int, selected_for_date: date
    ) -> int:
        from canteen import db

        quantity = db.session.execute(
            select(Selection.quantity).where(
                SelectionService._triple(
                    user_id, menu_item_id, selected_for_date
                )
            )
        ).scalar_one_or_none()
        return quantity or 0

    @staticmethod
    def _upsert(
        user_id: int,
        menu_item_id: int,
        selected_for_date: date,
        quantity: int,
        increment: bool,
    ) -> None:
        from canteen import db

        stmt = SelectionService._insert().values(
            user_id=user_id,
            menu_item_id=menu_item_id,
            selected_for_date=selected_for_date,
            quantity=quantity,
        )
        if increment:
            total = (
                cast(Selection.__table__.c.quantity, BigInteger)
                + stmt.excluded.quantity
            )
            new_quantity = case((total > MAX_INT, MAX_INT), else_=total)
        else:
            new_quantity = stmt.excluded.quantity
        stmt = stmt.on_conflict_do_update(
            index_elements=_SELECTION_KEY,
            set_={"quantity": new_quantity},
        )
        db.session.execute(stmt)

    @staticmethod
    def set_quantity(
        user_id: int,
        menu_item_id: int,
        selected_for_date: date,
        quantity: int,
    ) -> int:
        """
        Устанавливает точное количество блюда на дату.

        Returns:
            Итоговое сохранённое количество (0, если строки нет)
        """
        from canteen import db

        triple = SelectionService._triple(
            user_id, menu_item_id, selected_for_date
        )
        try:
            if quantity > 0:
                SelectionService._upsert(
                    user_id,
                    menu_item_id,
                    selected_for_date,
                    quantity,
                    increment=False,
                )
            else:
                db.session.execute(
                    delete(Selection)
                    .where(triple)
                    .execution_options(synchronize_session=False)
                )
            result = SelectionService._current_quantity(
                user_id, menu_item_id, selected_for_date
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return result

    @staticmethod
    def change_quantity(
        user_id: int,
        menu_item_id: int,
        selected_for_date: date,
        delta: int,
    ) -> int:
        """
        Изменяет количество на delta. Если итог <= 0, строка удаляется.

        Returns:
            Итоговое сохранённое количество (0, если строки нет)
        """
        from canteen import db

        triple = SelectionService._triple(
            user_id, menu_item_id, selected_for_date
        )
        try:
            if delta > 0:
                SelectionService._upsert(
                    user_id,
                    menu_item_id,
                    selected_for_date,
                    delta,
                    increment=True,
                )
            elif delta < 0:
                # блокировка строки в PostgreSQL, в SQLite FOR UPDATE
                # опускается и запись блокирует первый DELETE
                db.session.execute(
                    select(Selection.id).where(triple).with_for_update()
                ).scalar_one_or_none()
                db.session.execute(
                    delete(Selection)
                    .where(triple, Selection.quantity + delta <= 0)
                    .execution_options(synchronize_session=False)
                )
                db.session.execute(
                    update(Selection)
                    .where(triple)
                    .values(quantity=Selection.quantity + delta)
                    .execution_options(synchronize_session=False)
                )
            result = SelectionService._current_quantity(
                user_id, menu_item_id, selected_for_date
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return result

    @staticmethod
    def get_quantity(
        user_id: int, menu_item_id: int, selected_for_date: date
    ) -> int:
        return SelectionService._current_quantity(
            user_id, menu_item_id, selected_for_date
        )

    @staticmethod
    def get_user_selections(
        user_id: int, selected_for_date: date, static_root: str
    ) -> List[Dict[str, Any]]:
        """Заказы пользователя на дату вместе с названием и картинкой блюда."""
        from canteen import db

        rows = db.session.execute(
            select(
                Selection.id,
                Selection.menu_item_id,
                Selection.quantity,
                MenuItem.name,
                MenuItem.meal,
                MenuItem.img,
            )
            .join(MenuItem, MenuItem.id == Selection.menu_item_id)
            .where(
                Selection.user_id == user_id,
                Selection.selected_for_date == selected_for_date,
            )
            .order_by(MenuItem.meal, MenuItem.name)
        ).all()
        return [
            {
                "id": row.id,
                "menu_item_id": row.menu_item_id,
                "quantity": row.quantity,
                "name": row.name,
                "meal": row.meal,
                "img": resolve_image_path(row.img, static_root),
            }
            for row in rows
        ]


class ReportService:
    """Сводные отчёты для администратора"""

    @staticmethod
    def totals_by_item(
        selected_for_date: date, static_root: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Суммарное количество по каждому блюду на дату.
        Блюда без заказов попадают в отчёт с нулём.
        """
        from canteen import db

        total = func.coalesce(func.sum(Selection.quantity), 0)
        rows = db.session.execute(
            select(
                MenuItem.id,
                MenuItem.name,
                MenuItem.meal,
                MenuItem.img,
                total.label("total"),
            )
            .outerjoin(
                Selection,
                and_(
                    Selection.menu_item_id == MenuItem.id,
                    Selection.selected_for_date == selected_for_date,
                ),
            )
            .group_by(MenuItem.id)
            .order_by(MenuItem.meal, MenuItem.name)
        ).all()

        results = []
        for row in rows:
            img = row.img
            if static_root is not None:
                img = resolve_image_path(img, static_root)
            results.append(
                {
                    "menu_item_id": row.id,
                    "name": row.name,
                    "meal": row.meal,
                    "img": img,
                    "total": int(row.total),
                }
            )
        return results

    @staticmethod
    def userwise(selected_for_date: date) -> List[Dict[str, Any]]:
        """Все заказы на дату с именем пользователя, ролью и блюдом."""
        from canteen import db

        rows = db.session.execute(
            select(
                User.username,
                User.role,
                MenuItem.name.label("item"),
                MenuItem.meal,
                Selection.quantity,
                Selection.created_at,
            )
            .join(User, User.id == Selection.user_id)
            .join(MenuItem, MenuItem.id == Selection.menu_item_id)
            .where(Selection.selected_for_date == selected_for_date)
            .order_by(User.username, MenuItem.meal, MenuItem.name)
        ).all()
        return [
            {
                "username": row.username,
                "role": row.role,
                "item": row.item,
                "meal": row.meal,
                "quantity": row.quantity,
                "created_at": (
                    row.created_at.isoformat(sep=" ", timespec="seconds")
                    if row.created_at
                    else None
                ),
            }
            for row in rows
        ]
