# canteen/models.py
from flask_login import UserMixin
from datetime import datetime
from canteen import db
from canteen.utils import MEALS, ROLES


def _one_of(table, column, values):
    options = ", ".join(f"'{value}'" for value in values)
    return db.CheckConstraint(
        f"{column} IN ({options})", name=f"ck_{table}_{column}"
    )


class User(UserMixin, db.Model):
    __tablename__ = "users"
    __table_args__ = (_one_of("users", "role", ROLES),)

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    selections = db.relationship("Selection", backref="user", lazy=True)

    def to_dict(self):
        return {"id": self.id, "username": self.username, "role": self.role}


class MenuItem(db.Model):
    __tablename__ = "menu_items"
    __table_args__ = (_one_of("menu_items", "meal", MEALS),)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    meal = db.Column(db.String(20), nullable=False)
    img = db.Column(db.String(200), nullable=True)


class Selection(db.Model):
    __tablename__ = "selections"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id",
            "menu_item_id",
            "selected_for_date",
            name="uq_selection_user_item_date",
        ),
        db.CheckConstraint("quantity > 0", name="ck_selections_quantity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    menu_item_id = db.Column(
        db.Integer, db.ForeignKey("menu_items.id"), nullable=False
    )
    selected_for_date = db.Column(db.Date, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    menu_item = db.relationship("MenuItem", lazy=True)
