"""
LogiSync Auth API
=================
Flask adapter over the authentication flows.
"""

import os
from datetime import datetime, timezone
from functools import wraps

from flask import Flask, current_app, g, jsonify, request

from logisync.core.auth.results import ErrorCode, FlowResult
from logisync.core.auth.services import AuthServices, build_services
from logisync.core.auth.session_control import SessionError
from logisync.core.config import GuardConfig
from logisync.core.logging import configure_logging
from logisync.utils.validators import ValidationError, require_fields


STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.POLICY_VIOLATION: 400,
    ErrorCode.REUSE_VIOLATION: 400,
    ErrorCode.TOKEN_INVALID: 400,
    ErrorCode.ACCOUNT_EXISTS: 400,
    ErrorCode.ALREADY_VERIFIED: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.ACCOUNT_INACTIVE: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.LOCKED_OUT: 423,
}


def flow_response(result: FlowResult, success_status: int = 200):
    if result.success:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), STATUS_CODES.get(result.code, 400)


def get_services() -> AuthServices:
    return current_app.extensions["logisync"]


def json_body(*fields):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    require_fields(data, fields)
    return data


def bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return ""
    return header[len("Bearer "):].strip()


def require_auth(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"success": False, "message": "Unauthorized"}), 401
        try:
            session = get_services().sessions.validate_session(token)
        except SessionError as e:
            return jsonify({"success": False, "message": str(e)}), 401
        g.session_token = token
        g.owner_id = session.owner_id
        return f(*args, **kwargs)
    return wrapper


def create_app(config=None, services=None, start_cleanup=False):
    """
    Build the Flask application.

    Args:
        config: GuardConfig (loaded from the environment if omitted)
        services: Pre-built AuthServices, mainly for tests
        start_cleanup: Start the periodic token and session cleanup job
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 64 * 1024

    if services is None:
        config = config or GuardConfig.load()
        configure_logging(config.logging, config.paths.log_dir)
        services = build_services(config)
    app.extensions["logisync"] = services

    if start_cleanup:
        services.cleanup_job.start()

    # CORS handler - handles both preflight and actual requests
    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        response.headers['Access-Control-Max-Age'] = '3600'
        response.headers['Cache-Control'] = 'no-store'
        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({
            "success": False,
            "message": str(e),
            "code": ErrorCode.VALIDATION_ERROR.value,
        }), 400

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    # ============================================================
    # AUTHENTICATION ROUTES
    # ============================================================

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        data = json_body("email", "password")
        result = get_services().flows.register(data["email"], data["password"])
        return flow_response(result, success_status=201)

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = json_body("email", "password")
        result = get_services().flows.login(
            data["email"],
            data["password"],
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return flow_response(result)

    @app.route("/api/auth/logout", methods=["POST"])
    @require_auth
    def logout():
        return flow_response(get_services().flows.logout(g.session_token, g.owner_id))

    @app.route("/api/auth/change-password", methods=["POST"])
    @require_auth
    def change_password():
        data = json_body("currentPassword", "newPassword")
        result = get_services().flows.change_password(
            g.owner_id,
            data["currentPassword"],
            data["newPassword"],
            keep_session=g.session_token,
        )
        return flow_response(result)

    @app.route("/api/auth/forgot-password", methods=["POST"])
    def forgot_password():
        data = json_body("email")
        return flow_response(get_services().flows.request_password_reset(data["email"]))

    @app.route("/api/auth/reset-password", methods=["POST"])
    def reset_password():
        data = json_body("token", "newPassword")
        result = get_services().flows.reset_password(data["token"], data["newPassword"])
        return flow_response(result)

    @app.route("/api/auth/verify-email/<token>", methods=["GET"])
    def verify_email(token):
        return flow_response(get_services().flows.verify_email(token))

    @app.route("/api/auth/resend-verification", methods=["POST"])
    def resend_verification():
        data = json_body("email")
        return flow_response(get_services().flows.resend_verification(data["email"]))

    # ============================================================
    # PASSWORD POLICY
    # ============================================================

    @app.route("/api/auth/password-policy", methods=["GET"])
    def password_policy():
        policy = get_services().guard.get_policy()
        return jsonify({
            "success": True,
            "data": {
                "minLength": policy.min_length,
                "requireUppercase": policy.require_uppercase,
                "requireLowercase": policy.require_lowercase,
                "requireNumbers": policy.require_numbers,
                "requireSpecialChars": policy.require_special_chars,
                "specialCharacters": policy.special_characters,
                "preventReuse": policy.prevent_reuse,
                "maxAgeDays": policy.max_age_days,
            }
        })

    @app.route("/api/auth/password-strength", methods=["POST"])
    def password_strength():
        data = json_body("password")
        password = data["password"]
        if not isinstance(password, str):
            raise ValidationError("password must be a string")

        guard = get_services().guard
        strength = guard.calculate_password_strength(password)
        policy = guard.validate_password_policy(password)
        return jsonify({
            "success": True,
            "data": {
                "score": strength.score,
                "level": strength.level.value,
                "feedback": list(strength.feedback),
                "meetsPolicy": policy.valid,
                "errors": policy.messages,
            }
        })

    return app


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    application = create_app(start_cleanup=True)
    application.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
