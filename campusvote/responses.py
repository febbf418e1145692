# campusvote/responses.py

from flask import jsonify


def success(message, data=None, status=200):
    return jsonify({'status': 'success', 'message': message, 'data': data}), status


def fail(message, data=None, status=400):
    return jsonify({'status': 'fail', 'message': message, 'data': data}), status
