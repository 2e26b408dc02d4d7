from flask import Blueprint, jsonify, current_app, g
import logging
from services.auth import auth
from services.database import DatabaseError


# Create Blueprint
main_routes_bp = Blueprint('main_routes', __name__)

# Get logger
logger = logging.getLogger(__name__)


@auth.verify_password
def verify_password(username, password):
    users = current_app.config['USERS']
    if username in users and users[username] == password:
        return username


@main_routes_bp.route('/')
@auth.login_required
def homepage():
    return jsonify({
        "user": auth.current_user(),
        "services": ["fabric-pool", "inventory-import", "pricing-grids", "client-import"],
    })


@main_routes_bp.route('/health')
def health():
    try:
        g.db.execute_query("SELECT 1").fetchone()
    except DatabaseError as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "error", "error": str(e)}), 500
    return jsonify({"status": "ok"})


@main_routes_bp.route('/robots.txt')
def robots_txt():
    return "User-agent: *\nDisallow: /", 200, {"Content-Type": "text/plain"}
