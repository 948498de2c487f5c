import os

from flask import Flask, session
from supabase import ClientOptions, create_client

from .ai import (
    DEFAULT_API_URL,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_TEXT_MODEL,
    GeminiClient,
)
from .auth.routes import auth_bp
from .constants import APP_NAME, USER_ROLE_LABELS
from .main.routes import main_bp


def create_app():
    app = Flask(
        __name__,
        template_folder="../templates",
        static_folder="../static",
    )
    app.secret_key = os.environ["SECRET_KEY"]

    timeout = float(os.environ.get("SUPABASE_TIMEOUT_SECONDS") or 7)
    supabase = create_client(
        os.environ["SUPABASE_URL"],
        os.environ["SUPABASE_SERVICE_KEY"],
        options=ClientOptions(postgrest_client_timeout=timeout),
    )
    app.config["SUPABASE"] = supabase
    app.config["SUPABASE_URL"] = os.environ["SUPABASE_URL"]
    app.config["LOCAL_TIMEZONE"] = os.environ.get("LOCAL_TIMEZONE")

    app.config["AI_CLIENT"] = GeminiClient(
        os.environ.get("GEMINI_API_KEY"),
        text_model=os.environ.get("GEMINI_TEXT_MODEL") or DEFAULT_TEXT_MODEL,
        image_model=os.environ.get("GEMINI_IMAGE_MODEL") or DEFAULT_IMAGE_MODEL,
        api_url=os.environ.get("GEMINI_API_URL") or DEFAULT_API_URL,
    )

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)

    @app.context_processor
    def inject_user_context():
        role = session.get("role")
        return {
            "app_name": APP_NAME,
            "username": session.get("username"),
            "user_role": role,
            "user_role_label": USER_ROLE_LABELS.get(role, role),
            "user_id": session.get("user_id"),
        }

    return app
