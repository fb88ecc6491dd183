from typing import Optional

from flask import request

from errors import InvalidInput

ALLOWED_EXTENSIONS = {'csv', 'xlsx'}

def allowed_file(filename):
    """Check if the file has an allowed extension."""
    return bool(filename) and '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS

def request_data() -> dict:
    """Form fields or a JSON body, whichever the client sent."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()

def parse_int(value, field: str, minimum: Optional[int] = None, default: Optional[int] = None) -> int:
    """Coerce a request value to int, raising InvalidInput with the field name."""
    if value is None or value == '':
        if default is not None:
            return default
        raise InvalidInput(f"{field} is required")
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise InvalidInput(f"{field} must be an integer") from None
    if minimum is not None and number < minimum:
        raise InvalidInput(f"{field} must be at least {minimum}")
    return number

def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in {'1', 'true', 'yes', 'on'}
