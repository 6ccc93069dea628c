import hmac
import logging
import os
from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import ActivationError, NotFound
from .registry import CodeRegistry

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


def services():
    return current_app.extensions['activation']


def params():
    """Query string merged with the JSON body; the body wins."""
    data = request.args.to_dict()
    if request.method == 'POST':
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            data.update(body)
    return data


def fail(message, status=200):
    return jsonify({'ok': False, 'message': message}), status


def verify_admin(data):
    """Check the admin password when one is configured."""
    expected = current_app.config.get('ADMIN_PASSWORD')
    if not expected:
        return True
    given = data.get('password') or ''
    auth = request.headers.get('Authorization', '')
    if not given and auth.startswith('Bearer '):
        given = auth[len('Bearer '):]
    return hmac.compare_digest(str(given).encode('utf-8'), expected.encode('utf-8'))


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not verify_admin(params()):
            logger.warning('Rejected admin request from %s', request.remote_addr)
            return fail('Invalid admin password', 401)
        return f(*args, **kwargs)
    return decorated


@api.errorhandler(ActivationError)
def handle_activation_error(e):
    return fail(e.message)


@api.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception('Unhandled error on %s', request.path)
    return jsonify({'ok': False, 'message': 'Server error', 'debug': str(e)}), 500


@api.route('/verify', methods=['GET', 'POST'])
def verify():
    """Validate an activation code for a device (PUBLIC)"""
    data = params()
    code = data.get('code')
    device_id = data.get('deviceId')

    if not code or not isinstance(code, str):
        return fail('Activation code required', 400)
    if not device_id or not isinstance(device_id, str):
        return fail('Device ID required', 400)

    result = services().bindings.verify(code, device_id)
    return jsonify({'ok': True, 'message': 'Activation successful', 'meta': result.meta()})


@api.route('/manage', methods=['GET', 'POST'])
@admin_required
def manage():
    """Generate, toggle, delete and list codes (ADMIN only)"""
    data = params()
    action = data.get('action')
    admin = services().admin

    if action == 'list':
        codes = services().registry.list()
        return jsonify(dict(ok=True, codes=[c.to_dict() for c in codes], **admin.summary()))

    if action == 'generate':
        codes, _ = admin.generate(
            prefix=data.get('prefix') or 'VIP',
            count=data.get('count', 1),
            expiry_days=data.get('expiryDays', 30),
            note=data.get('note') or '',
        )
        return jsonify({'ok': True, 'message': 'Generated %d activation codes' % len(codes), 'codes': codes})

    if action == 'toggle':
        code = data.get('code')
        if not code:
            return fail('Activation code required')
        active, _ = admin.toggle(code, data.get('active'))
        return jsonify({'ok': True, 'message': 'Activation code %s %s' % (code, 'enabled' if active else 'disabled')})

    if action == 'delete':
        code = data.get('code')
        if not code:
            return fail('Activation code required')
        admin.delete(code)
        return jsonify({'ok': True, 'message': 'Activation code %s deleted' % code})

    codes = services().registry.list()
    return jsonify(dict(ok=True, codes=[{
        'code': c.code,
        'note': c.note,
        'expiresAt': c.expiresAt,
        'active': c.active,
        'createdAt': c.createdAt,
    } for c in codes], **admin.summary()))


@api.route('/bindings', methods=['GET', 'POST'])
@admin_required
def bindings():
    """Inspect and reset the binding cache (ADMIN only)

    ``unbind`` always answers ok once the local file is updated; when the
    remote copy could not be written ``writeback`` is false and
    ``writebackError`` carries the reason.
    """
    data = params()
    action = data.get('action') or 'list'
    manager = services().bindings

    if action == 'list':
        entries = manager.bindings()
        return jsonify({'ok': True, 'total': len(entries), 'bindings': entries})

    if action == 'clear':
        wr = manager.clear()
        return jsonify({'ok': True, 'message': 'All device bindings cleared', 'writeback': wr.updated})

    if action == 'unbind':
        code = data.get('code')
        if not code:
            return fail('Activation code required', 400)
        _, wr = manager.unbind(code)
        payload = {'ok': True, 'message': 'Activation code %s unbound' % code, 'writeback': wr.updated}
        if not wr.updated and wr.error:
            payload['writebackError'] = wr.error
        return jsonify(payload)

    return fail('Invalid action', 400)


@api.route('/devices', methods=['GET', 'POST'])
@admin_required
def devices():
    """List, unbind and rebind devices (ADMIN only)"""
    data = params()
    action = data.get('action') or 'list'
    manager = services().bindings

    if action == 'list':
        entries = manager.devices()
        return jsonify({'ok': True, 'total': len(entries), 'devices': entries})

    if action == 'unbind':
        code = data.get('code')
        if not code:
            return fail('Activation code required', 400)
        old_device, _ = manager.unbind(code, require_bound=True)
        return jsonify({'ok': True, 'message': 'Device unbound', 'unboundDeviceId': old_device})

    if action == 'rebind':
        code = data.get('code')
        new_device = data.get('newDeviceId')
        if not code or not new_device:
            return fail('Activation code and new device ID required', 400)
        old_device, _ = manager.rebind(code, new_device)
        return jsonify({
            'ok': True,
            'message': 'Device rebound',
            'oldDeviceId': old_device,
            'newDeviceId': new_device,
        })

    return fail('Invalid action', 400)


def _status_candidates():
    target = current_app.config['CODES_FILE']
    paths = [
        target,
        os.path.join(os.path.dirname(target), os.pardir, 'codes.json'),
        os.path.join(os.getcwd(), 'codes.json'),
    ]
    return list(dict.fromkeys(os.path.abspath(p) for p in paths))


@api.route('/status', methods=['GET'])
def status():
    """Read-only snapshot of the codes file"""
    try:
        codes, tried = CodeRegistry.locate(_status_candidates())
        resp = jsonify({'ok': True, 'total': len(codes), 'codes': codes, 'tried': tried})
        status_code = 200
    except NotFound as e:
        logger.error('status error: %s', e.message)
        resp = jsonify({'ok': False, 'message': 'Server error', 'debug': e.message})
        status_code = 500
    resp.status_code = status_code
    resp.headers['Cache-Control'] = 'no-store, max-age=0'
    resp.headers['Pragma'] = 'no-cache'
    return resp


@api.route('/diag', methods=['GET'])
def diag():
    """Where the server looks for its codes file"""
    target = os.path.abspath(current_app.config['CODES_FILE'])
    dirname = os.path.dirname(target)
    return jsonify({
        'ok': True,
        '__dirname': dirname,
        'listHere': sorted(os.listdir(dirname)) if os.path.isdir(dirname) else [],
        'target': target,
        'exists': os.path.exists(target),
    })
