import logging

from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import generate_password_hash, check_password_hash

from ..models import User, db

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
logger = logging.getLogger(__name__)


def _payload():
    return request.get_json(silent=True) or request.form


@auth_bp.get("/csrf")
def csrf_token():
    return {"csrf_token": generate_csrf()}


@auth_bp.post("/signup")
def signup():
    data = _payload()
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip() or None
    password = data.get("password") or ""
    if not username or not password:
        return jsonify({"success": False, "error": "Username and password required."}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"success": False, "error": "Username already taken."}), 409
    if email and User.query.filter_by(email=email).first():
        return jsonify({"success": False, "error": "Email already registered."}), 409
    user = User(username=username, email=email, password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.commit()
    login_user(user, remember=True)
    logger.info("New user %s signed up", user.id)
    return jsonify({"success": True, "user": user.to_dict()}), 201


@auth_bp.post("/login")
def login():
    data = _payload()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    user = User.query.filter_by(username=username).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.warning("Failed login for %r", username)
        return jsonify({"success": False, "error": "Invalid credentials."}), 401
    login_user(user, remember=True)
    return {"success": True, "user": user.to_dict()}


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return {"success": True}


@auth_bp.get("/me")
@login_required
def me():
    return {"user": current_user.to_dict()}
