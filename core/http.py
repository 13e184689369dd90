import json
from functools import wraps

from django.http import JsonResponse


class BadJSON(ValueError):
    pass


def read_json(request) -> dict:
    """Decodes a JSON object body; raises BadJSON for anything else."""
    try:
        body = json.loads(request.body.decode('utf-8') or '{}')
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadJSON(f"Invalid JSON: {e}") from e
    if not isinstance(body, dict):
        raise BadJSON("JSON body must be an object")
    return body


def json_error(message, status=400, **extra):
    return JsonResponse({"success": False, "message": message, **extra}, status=status)


# login_required redirects to a login page; API clients get a 401 instead
def api_login_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return json_error("Authentication required", status=401)
        return view(request, *args, **kwargs)
    return wrapper


def api_staff_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return json_error("Authentication required", status=401)
        if not (request.user.is_staff or request.user.is_superuser):
            return json_error("Admin access required", status=403)
        return view(request, *args, **kwargs)
    return wrapper
