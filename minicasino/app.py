import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import Flask, current_app, jsonify
from flask_cors import CORS
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException

from .accounts import AccountDirectory
from .casino import Casino
from .config import settings_dict
from .errors import CasinoError, NotAuthenticated
from .ledger import Ledger
from .store import JsonFileStore

logger = logging.getLogger(__name__)

login_manager = LoginManager()
login_manager.session_protection = None


@dataclass
class Services:
    repo: object
    accounts: AccountDirectory
    ledger: Ledger
    casino: Casino


def services() -> Services:
    return current_app.extensions["minicasino"]


def build_repository(settings: dict):
    url = settings.get("DATABASE_URL")
    if url:
        # imported lazily so JSON-file deployments never touch SQLAlchemy engines
        from .sql_store import SqlStore

        logger.info("Using SQL store")
        return SqlStore(url)
    logger.info("Using JSON store at %s", settings["STORE_PATH"])
    return JsonFileStore(settings["STORE_PATH"])


# ---------------------- AUTH LOADING ----------------------
@login_manager.request_loader
def load_user_from_request(request):
    token = request.cookies.get(current_app.config["SESSION_COOKIE"])
    return services().accounts.resolve_session(token)


@login_manager.unauthorized_handler
def unauthorized():
    raise NotAuthenticated("Please login")


# ---------------------- ERRORS ----------------------------
def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CasinoError)
    def casino_error(e):
        return jsonify({"error": e.code, "message": e.message}), e.status

    @app.errorhandler(Exception)
    def server_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.name.lower().replace(" ", "_"), "message": e.description}), e.code
        # persistence failures land here; nothing is retried or rolled back
        logger.exception("Unhandled error")
        return jsonify({"error": "server_error"}), 500


# ---------------------- FACTORY ---------------------------
def create_app(overrides=None, repo=None, rng=None) -> Flask:
    settings = settings_dict(overrides)
    logging.basicConfig(
        level=settings["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config.update(settings)
    app.json.sort_keys = False

    CORS(app, supports_credentials=True, origins=settings["CORS_ORIGINS"])
    login_manager.init_app(app)

    repo = repo if repo is not None else build_repository(settings)
    ledger = Ledger(
        repo,
        promo_code=settings["PROMO_CODE"],
        promo_bonus=settings["PROMO_BONUS"],
        history_limit=settings["HISTORY_LIMIT"],
        history_max=settings["HISTORY_MAX"],
    )
    accounts = AccountDirectory(
        repo,
        session_ttl=timedelta(hours=settings["SESSION_TTL_HOURS"]),
        remember_me_ttl=timedelta(days=settings["REMEMBER_ME_DAYS"]),
    )
    app.extensions["minicasino"] = Services(repo=repo, accounts=accounts, ledger=ledger,
                                            casino=Casino(ledger, rng=rng))

    from .routes import auth, balance, game, system

    for bp in (auth, balance, game, system):
        app.register_blueprint(bp)
    register_error_handlers(app)
    return app
