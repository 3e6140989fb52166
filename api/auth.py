# FILE: ecohunt-backend/api/auth.py

import datetime
from functools import wraps
from flask import request, current_app
import jwt

from .error_utils import create_error_response


def create_access_token(user_id, username=None):
    """Issues an HS256 bearer token for `user_id`."""
    payload = {
        'user_id': user_id,
        'exp': datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=current_app.config.get('JWT_EXPIRY_DAYS', 30)),
    }
    if username:
        payload['username'] = username
    return jwt.encode(payload, current_app.config['JWT_SECRET_KEY'], algorithm="HS256")

def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization')
        if not auth_header or not auth_header.startswith('Bearer '): return create_error_response("TOKEN_MISSING", status_code=401)
        token = auth_header.split(' ')[1]
        try:
            data = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=["HS256"]); kwargs['user_id'] = data['user_id']
        except (jwt.ExpiredSignatureError, jwt.InvalidTokenError, KeyError): return create_error_response("TOKEN_INVALID", status_code=401)
        return f(*args, **kwargs)
    return decorated
