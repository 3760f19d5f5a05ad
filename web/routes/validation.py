"""Licence validation endpoint called by POS terminals."""

from flask import Blueprint, jsonify, request

from web.services import get_lifecycle

bp = Blueprint("validation", __name__)

CUSTOMER_PARAMS = ("customer_email", "customer_phone", "customer_business")


@bp.route("/validate", methods=["GET", "POST"])
def validate_licence():
    """Validate (and on first use activate) a licence.

    Failures are reported in the body with HTTP 200; terminals branch on
    ``success`` and ``code``. The ``type`` parameter some clients send is
    ignored, the stored licence type always wins.
    """
    params = request.args.to_dict()
    if request.method == "POST":
        body = request.get_json(silent=True)
        params.update(body if isinstance(body, dict) else request.form.to_dict())

    key = str(params.get("key") or "").strip()
    hardware = params.get("hardware", params.get("hardware_id"))
    customer = {name: params[name] for name in CUSTOMER_PARAMS if params.get(name)}

    result = get_lifecycle().validate(key, hardware, customer)
    return jsonify(result.to_dict())
