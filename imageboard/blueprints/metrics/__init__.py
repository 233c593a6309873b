from flask import Blueprint

metrics = Blueprint("metrics", __name__)

from . import routes as routes  # noqa: E402, F401
