"""
RPC procedures over HTTP: `/api/<namespace>.<procedure>`.

Queries are GET (arguments in the query string), mutations are POST with a
JSON body. The session travels in an httponly cookie.
"""
import logging

from flask import Blueprint, current_app, jsonify, make_response, request
from flask_login import current_user, login_required

from .app import services
from .errors import ValidationError

logger = logging.getLogger(__name__)

auth = Blueprint("auth", __name__, url_prefix="/api")
balance = Blueprint("balance", __name__, url_prefix="/api")
game = Blueprint("game", __name__, url_prefix="/api")
system = Blueprint("system", __name__, url_prefix="/api")


# ---------- Helpers ----------
def body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def get_or_400(d, key, cast=str):
    if key not in d or d[key] is None:
        raise ValidationError(f"Missing field: {key}")
    try:
        return cast(d[key])
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value for {key}")


def as_list(value):
    if not isinstance(value, list):
        raise ValueError(value)
    return value


def optional_bool(d, key, default=False) -> bool:
    value = d.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"Invalid value for {key}")
    return value


def set_session_cookie(resp, token, lifetime):
    cfg = current_app.config
    resp.set_cookie(
        cfg["SESSION_COOKIE"],
        token,
        max_age=int(lifetime.total_seconds()),
        httponly=True,
        samesite="Lax",
        secure=cfg["SESSION_COOKIE_SECURE"],
        path="/",
    )
    return resp


# ---------------------- AUTH ------------------------------
@auth.post("/auth.register")
def register():
    d = body()
    svc = services()
    user = svc.accounts.register(
        get_or_400(d, "username"),
        get_or_400(d, "password"),
        name=d.get("name"),
        email=d.get("email"),
    )
    # every new account starts with a zero balance row
    svc.ledger.get_balance(user.id)
    svc.ledger.apply_promo(user.id, d.get("promoCode"))

    token, lifetime = svc.accounts.open_session(user)
    resp = make_response(jsonify({"success": True, "user": user.public()}), 201)
    return set_session_cookie(resp, token, lifetime)


@auth.post("/auth.login")
def login():
    d = body()
    svc = services()
    remember_me = optional_bool(d, "rememberMe")
    user = svc.accounts.authenticate(get_or_400(d, "username"), get_or_400(d, "password"))
    token, lifetime = svc.accounts.open_session(user, remember_me=remember_me)
    resp = make_response(jsonify({"success": True, "user": user.public()}))
    return set_session_cookie(resp, token, lifetime)


@auth.post("/auth.logout")
def logout():
    cookie = current_app.config["SESSION_COOKIE"]
    services().accounts.close_session(request.cookies.get(cookie))
    logger.info("Session closed")
    resp = make_response(jsonify({"success": True}))
    resp.delete_cookie(cookie, path="/")
    return resp


@auth.get("/auth.me")
def me():
    if not current_user.is_authenticated:
        return jsonify(None)
    return jsonify(current_user.profile())


# ---------------------- BALANCE ---------------------------
@balance.get("/balance.get")
@login_required
def get_balance():
    return jsonify(services().ledger.get_balance(current_user.id).to_dict())


@balance.post("/balance.update")
@login_required
def update_balance():
    d = body()
    row = services().ledger.set_balance(current_user.id, get_or_400(d, "newBalance"))
    return jsonify(row.to_dict())


@balance.post("/balance.reset")
@login_required
def reset_balance():
    return jsonify(services().ledger.reset_balance(current_user.id).to_dict())


@balance.get("/balance.getWithdrawalAddresses")
@login_required
def get_withdrawal_addresses():
    return jsonify(services().accounts.withdrawal_addresses(current_user))


@balance.post("/balance.setWithdrawalAddress")
@login_required
def set_withdrawal_address():
    d = body()
    book = services().accounts.set_withdrawal_address(
        current_user, get_or_400(d, "crypto"), get_or_400(d, "address", lambda v: v)
    )
    return jsonify(book)


# ---------------------- GAMES -----------------------------
@game.post("/game.play")
@login_required
def play():
    """
    JSON: { "gameType": "slots", "betAmount": "10", "winAmount": "20", "result": "{...}" }
    Records a play whose outcome the caller already computed.
    """
    d = body()
    record = services().casino.record(
        current_user,
        get_or_400(d, "gameType"),
        get_or_400(d, "betAmount"),
        get_or_400(d, "winAmount"),
        d.get("result"),
    )
    return jsonify(record.to_dict())


@game.get("/game.history")
@login_required
def history():
    """Return recent plays for the authenticated user, newest first."""
    limit = request.args.get("limit")
    if limit is not None:
        try:
            limit = int(limit)
        except ValueError:
            raise ValidationError("Invalid value for limit", code="bad_pagination")
    records = services().ledger.list_history(current_user.id, limit)
    return jsonify([r.to_dict() for r in records])


@game.post("/game.slots")
@login_required
def slots_spin():
    """JSON: { "betAmount": 10 }. Three reels; triple pays 10x, adjacent pair 2x."""
    d = body()
    return jsonify(services().casino.slots(current_user, get_or_400(d, "betAmount")).to_dict())


@game.post("/game.dice")
@login_required
def dice_roll():
    """JSON: { "betAmount": 10, "target": 50, "over": true }"""
    d = body()
    play = services().casino.dice(
        current_user,
        get_or_400(d, "betAmount"),
        get_or_400(d, "target"),
        over=optional_bool(d, "over", default=True),
    )
    return jsonify(play.to_dict())


@game.post("/game.roulette")
@login_required
def roulette_spin():
    """JSON: { "betAmount": 10 }. Zero pays 35x, red pays 2x, black loses."""
    d = body()
    return jsonify(services().casino.roulette(current_user, get_or_400(d, "betAmount")).to_dict())


@game.post("/game.coinflip")
@login_required
def coinflip():
    """JSON: { "betAmount": 10, "choice": "heads" }"""
    d = body()
    play = services().casino.coinflip(current_user, get_or_400(d, "betAmount"), get_or_400(d, "choice"))
    return jsonify(play.to_dict())


@game.post("/game.wheel")
@login_required
def wheel_spin():
    d = body()
    return jsonify(services().casino.wheel(current_user, get_or_400(d, "betAmount")).to_dict())


@game.post("/game.blackjackDeal")
@login_required
def blackjack_deal():
    d = body()
    return jsonify(services().casino.blackjack_deal(current_user, get_or_400(d, "betAmount")).to_dict())


@game.post("/game.blackjackHit")
@login_required
def blackjack_hit():
    """JSON: { "betAmount": 10, "playerCards": ["10", "6"], "dealerCards": ["K"] }"""
    d = body()
    play = services().casino.blackjack_hit(
        current_user,
        get_or_400(d, "betAmount"),
        get_or_400(d, "playerCards", as_list),
        get_or_400(d, "dealerCards", as_list),
    )
    return jsonify(play.to_dict())


@game.post("/game.blackjackStand")
@login_required
def blackjack_stand():
    d = body()
    play = services().casino.blackjack_stand(
        current_user,
        get_or_400(d, "betAmount"),
        get_or_400(d, "playerCards", as_list),
        get_or_400(d, "dealerCards", as_list),
    )
    return jsonify(play.to_dict())


# ---------------------- HEALTH ----------------------------
@system.get("/system.health")
def health():
    return {"ok": True}
