# canteen/views.py
from flask import (
    Blueprint,
    current_app,
    request,
    jsonify,
    session,
    send_file,
)
from flask_login import (
    login_user,
    login_required,
    logout_user,
    current_user,
)
from functools import wraps
from io import BytesIO, StringIO
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill, Border, Side
from sqlalchemy.exc import SQLAlchemyError
import csv
from canteen.services import (
    MenuService,
    ReportService,
    SelectionService,
    UserService,
)
from canteen.utils import (
    coerce_int,
    parse_positive_id,
    parse_selection_date,
    validate_login,
    validate_registration,
)

views = Blueprint("views", __name__)


def _json_error(message, status_code=400):
    return jsonify({"error": message}), status_code


def _request_data():
    """Тело запроса: JSON или поля формы, смотря что прислал клиент."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _static_root():
    return current_app.static_folder


def admin_required(fn):
    """Доступ администратора: флаг сессии из /api/admin/login."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("is_admin"):
            return _json_error("admin required", 401)
        return fn(*args, **kwargs)

    return wrapper


def _parse_date_arg(value):
    """Возвращает (date, None) или (None, ответ с ошибкой)."""
    try:
        return parse_selection_date(value), None
    except ValueError:
        return None, _json_error("invalid date", 400)


def _parse_selection_request(data):
    """Проверяет menu_item_id и дату в запросе на заказ.

    Returns:
        tuple[int, date, Response|None]:
            (menu_item_id, selected_for_date, error_response)
    """
    raw_id = data.get("menu_item_id")
    if raw_id is None or raw_id == "":
        return None, None, _json_error("menu_item_id required", 400)
    menu_item_id = parse_positive_id(raw_id)
    if menu_item_id is None:
        return None, None, _json_error("invalid menu_item_id", 400)

    selected_for_date, error = _parse_date_arg(data.get("date"))
    if error:
        return None, None, error

    if MenuService.get_item(menu_item_id) is None:
        return None, None, _json_error("menu item not found", 404)
    return menu_item_id, selected_for_date, None


# ----- auth -----
@views.route("/register", methods=["POST"])
def register():
    data = _request_data()
    username = data.get("username")
    password = data.get("password")
    role = data.get("role")

    is_valid, message = validate_registration(username, password, role)
    if not is_valid:
        return jsonify({"success": False, "msg": message}), 400

    try:
        success, message = UserService.register(username, password, role)
    except SQLAlchemyError:
        current_app.logger.exception("Registration of %r failed", username)
        return jsonify({"success": False, "msg": "server error"}), 500
    if not success:
        return jsonify({"success": False, "msg": message}), 409
    return jsonify({"success": True})


@views.route("/login", methods=["POST"])
def login():
    data = _request_data()
    username = data.get("username")
    password = data.get("password")
    role = data.get("role")
    if not validate_login(username, password, role):
        return jsonify({"success": False}), 400

    try:
        user = UserService.authenticate(username, password, role)
    except SQLAlchemyError:
        current_app.logger.exception("Login lookup for %r failed", username)
        return jsonify({"success": False}), 500
    if user is None:
        return jsonify({"success": False}), 401

    login_user(user)
    return jsonify({"success": True, "user": user.to_dict()})


@views.route("/logout", methods=["POST"])
def logout():
    logout_user()
    session.pop("is_admin", None)
    return jsonify({"ok": True})


@views.route("/api/me")
def me():
    if not current_user.is_authenticated:
        return jsonify({"user": None})
    return jsonify({"user": current_user.to_dict()})


# ----- menu & selections -----
@views.route("/api/menu")
def menu():
    try:
        grouped = MenuService.get_grouped_menu(_static_root())
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load menu")
        return _json_error("server error", 500)
    return jsonify({"menu": grouped})


@views.route("/api/select", methods=["POST"])
@login_required
def select_item():
    """Задаёт точное количество блюда на дату для текущего пользователя."""
    data = _request_data()
    user_id = current_user.id
    try:
        menu_item_id, selected_for_date, error = _parse_selection_request(
            data
        )
        if error:
            return error
        quantity = SelectionService.set_quantity(
            user_id,
            menu_item_id,
            selected_for_date,
            coerce_int(data.get("quantity"), 0),
        )
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to set quantity for user %s", user_id
        )
        return _json_error("server error", 500)
    return jsonify({"ok": True, "quantity": quantity})


@views.route("/api/change", methods=["POST"])
@login_required
def change_item():
    """Прибавляет delta (со знаком) к количеству текущего пользователя."""
    data = _request_data()
    user_id = current_user.id
    try:
        menu_item_id, selected_for_date, error = _parse_selection_request(
            data
        )
        if error:
            return error
        quantity = SelectionService.change_quantity(
            user_id,
            menu_item_id,
            selected_for_date,
            coerce_int(data.get("delta"), 0),
        )
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to change quantity for user %s", user_id
        )
        return _json_error("server error", 500)
    return jsonify({"ok": True, "quantity": quantity})


@views.route("/api/my-selections")
@login_required
def my_selections():
    user_id = current_user.id
    selected_for_date, error = _parse_date_arg(request.args.get("date"))
    if error:
        return error
    try:
        selections = SelectionService.get_user_selections(
            user_id, selected_for_date, _static_root()
        )
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to list selections for user %s", user_id
        )
        return jsonify({"selections": []}), 500
    return jsonify({"selections": selections})


# ----- admin -----
@views.route("/api/admin/login", methods=["POST"])
def admin_login():
    password = _request_data().get("password")
    if password != current_app.config["ADMIN_PASSWORD"]:
        current_app.logger.warning(
            "Rejected admin login from %s", request.remote_addr
        )
        return jsonify({"ok": False}), 403
    session["is_admin"] = True
    return jsonify({"ok": True})


@views.route("/api/admin/totals")
@admin_required
def admin_totals():
    selected_for_date, error = _parse_date_arg(request.args.get("date"))
    if error:
        return error
    try:
        totals = ReportService.totals_by_item(
            selected_for_date, _static_root()
        )
    except SQLAlchemyError:
        current_app.logger.exception("Failed to build totals")
        return _json_error("server error", 500)
    return jsonify({"date": selected_for_date.isoformat(), "totals": totals})


@views.route("/api/admin/userwise")
@admin_required
def admin_userwise():
    selected_for_date, error = _parse_date_arg(request.args.get("date"))
    if error:
        return error
    try:
        rows = ReportService.userwise(selected_for_date)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to build userwise listing")
        return _json_error("server error", 500)
    return jsonify({"date": selected_for_date.isoformat(), "rows": rows})


def _build_totals_csv(totals):
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["item", "meal", "total"])
    for row in totals:
        writer.writerow([row["name"], row["meal"], row["total"]])
    return BytesIO(buffer.getvalue().encode("utf-8"))


def _auto_fit_columns(ws):
    column_widths = {}
    for row in ws.iter_rows(
        min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column
    ):
        for cell in row:
            value = str(cell.value) if cell.value is not None else ""
            letter = cell.column_letter
            column_widths[letter] = max(
                column_widths.get(letter, 0),
                len(value) + 2,
            )
    for col_letter, width in column_widths.items():
        ws.column_dimensions[col_letter].width = min(40, width)


def _build_totals_workbook(totals, selected_for_date):
    wb = Workbook()
    ws = wb.active
    ws.title = selected_for_date.isoformat()

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(
        start_color="667EEA", end_color="667EEA", fill_type="solid"
    )
    thin_border = Border(
        left=Side(style="thin", color="DDDDDD"),
        right=Side(style="thin", color="DDDDDD"),
        top=Side(style="thin", color="DDDDDD"),
        bottom=Side(style="thin", color="DDDDDD"),
    )

    ws.append(["item", "meal", "total"])
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = thin_border

    for row in totals:
        ws.append([row["name"], row["meal"], row["total"]])

    for row in ws.iter_rows(min_row=2, max_row=ws.max_row, max_col=3):
        for cell in row:
            cell.border = thin_border
            align = "left" if cell.column == 1 else "center"
            cell.alignment = Alignment(horizontal=align, vertical="center")

    _auto_fit_columns(ws)

    if ws.max_row >= 2:
        ws.append(["TOTAL", "", f"=SUM(C2:C{ws.max_row})"])
        for cell in ws[ws.max_row]:
            cell.border = thin_border
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal="center", vertical="center")

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output


@views.route("/api/admin/export-totals")
@admin_required
def admin_export_totals():
    """Итоги по блюдам в CSV, а при format=xlsx в книге Excel."""
    export_format = request.args.get("format", "csv").lower()
    if export_format not in ("csv", "xlsx"):
        return _json_error("unsupported format", 400)
    selected_for_date, error = _parse_date_arg(request.args.get("date"))
    if error:
        return error

    try:
        totals = ReportService.totals_by_item(selected_for_date)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to export totals")
        return _json_error("server error", 500)

    filename = f"totals_{selected_for_date.isoformat()}.{export_format}"
    if export_format == "xlsx":
        return send_file(
            _build_totals_workbook(totals, selected_for_date),
            as_attachment=True,
            download_name=filename,
            mimetype=(
                "application/"
                "vnd.openxmlformats-officedocument.spreadsheetml.sheet"
            ),
        )
    return send_file(
        _build_totals_csv(totals),
        as_attachment=True,
        download_name=filename,
        mimetype="text/csv",
    )
