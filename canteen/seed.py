# canteen/seed.py
from flask import current_app
from canteen import db
from canteen.models import User, MenuItem
from canteen.services import UserService

DEFAULT_USERS = [
    ("admin", "admin123", "admin"),
    ("student1", "stud1123", "student"),
    ("student2", "stud2123", "student"),
    ("staff1", "staff1123", "staff"),
    ("staff2", "staff2123", "staff"),
]

DEFAULT_MENU = [
    # breakfast
    ("Poha", "breakfast", "/images/poha.jpeg"),
    ("Samosa", "breakfast", "/images/samosa.jpeg"),
    ("Coffee", "breakfast", "/images/coffee.jpeg"),
    ("Upma", "breakfast", "/images/upma.jpeg"),
    ("Idli", "breakfast", "/images/idli.jpeg"),
    ("Dosa", "breakfast", "/images/dosa.jpeg"),
    ("Tea", "breakfast", "/images/tea.jpeg"),
    ("Sandwich", "breakfast", "/images/sandwich.jpeg"),
    ("Paratha", "breakfast", "/images/paratha.jpeg"),
    ("Fruit Salad", "breakfast", "/images/salad.jpeg"),
    # lunch
    ("Thali (Lunch)", "lunch", "/images/thali.jpeg"),
    ("Roti", "lunch", "/images/roti.jpeg"),
    ("Paneer Curry", "lunch", "/images/paneer.jpeg"),
    ("Rice", "lunch", "/images/rice.jpeg"),
    ("Dal", "lunch", "/images/dal.jpeg"),
    ("Salad", "lunch", "/images/salad.jpeg"),
    ("Chapati", "lunch", "/images/chapati.jpeg"),
    ("Curry", "lunch", "/images/curry.jpeg"),
    ("Khichdi", "lunch", "/images/khichdi.jpeg"),
    ("Gulab Jamun", "lunch", "/images/gulabjamun.jpeg"),
    # dinner
    ("Roti (Dinner)", "dinner", "/images/roti2.jpeg"),
    ("Sabji", "dinner", "/images/sabji.jpeg"),
    ("Rice (Dinner)", "dinner", "/images/rice2.jpeg"),
    ("Dal (Dinner)", "dinner", "/images/dal2.jpeg"),
    ("Paneer (Dinner)", "dinner", "/images/paneer.jpeg"),
    ("Chapati (Dinner)", "dinner", "/images/chapati.jpeg"),
    ("Curry (Dinner)", "dinner", "/images/curry.jpeg"),
    ("Salad (Dinner)", "dinner", "/images/salad.jpeg"),
    ("Sweet", "dinner", "/images/gulabjamun.jpeg"),
    ("Khichdi (Dinner)", "dinner", "/images/khichdi.jpeg"),
]


def seed_defaults() -> tuple[int, int]:
    """
    Заполняет пустые таблицы пользователей и меню значениями по умолчанию.
    Непустые таблицы не трогаются, поэтому повторный запуск безопасен.

    Returns:
        (число добавленных пользователей, число добавленных блюд)
    """
    users_added = 0
    items_added = 0

    if User.query.count() == 0:
        for username, password, role in DEFAULT_USERS:
            db.session.add(
                User(
                    username=username,
                    password=UserService.make_password(password),
                    role=role,
                )
            )
        users_added = len(DEFAULT_USERS)

    if MenuItem.query.count() == 0:
        for name, meal, img in DEFAULT_MENU:
            db.session.add(MenuItem(name=name, meal=meal, img=img))
        items_added = len(DEFAULT_MENU)

    db.session.commit()
    if users_added:
        current_app.logger.info("Seeded %d default users", users_added)
    if items_added:
        current_app.logger.info("Seeded %d menu items", items_added)
    return users_added, items_added
