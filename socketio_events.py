"""
WebSocket Event Handlers
Real-time fleet events for operator dashboards, one room per tenant
"""
from flask import request
from flask_socketio import emit, join_room
from extensions import socketio
from models import utcnow
import logging

logger = logging.getLogger(__name__)

# Track connected clients
connected_clients = {}


def tenant_room(tenant_id):
    return f'tenant_{tenant_id}'


@socketio.on('connect')
def handle_connect(auth=None):
    """Dashboard connection; the upstream gateway supplies the tenant id"""
    tenant_id = (auth or {}).get('tenant_id') or request.headers.get('X-Tenant-ID')
    if not tenant_id:
        logger.warning(f'Connection without tenant from {request.sid}')
        return False

    room = tenant_room(tenant_id)
    join_room(room)
    connected_clients[request.sid] = {'tenant_id': str(tenant_id), 'room': room}
    logger.info(f'Dashboard connected for tenant {tenant_id} (SID: {request.sid})')
    emit('connection_response', {
        'status': 'connected',
        'room': room,
        'client_id': request.sid
    })


@socketio.on('disconnect')
def handle_disconnect():
    """Handle client disconnection"""
    client = connected_clients.pop(request.sid, None)
    if client:
        logger.info(f'Dashboard disconnected for tenant {client["tenant_id"]} (SID: {request.sid})')


@socketio.on('ping')
def handle_ping():
    """Respond to ping (keep-alive)"""
    emit('pong', {'timestamp': utcnow().isoformat()})


# ============================================================================
# BROADCAST HELPERS
# ============================================================================

def _emit(event, tenant_id, payload):
    if socketio is not None:
        payload['timestamp'] = utcnow().isoformat()
        socketio.emit(event, payload, room=tenant_room(tenant_id), namespace='/')


def broadcast_device_online(tenant_id, device_id, device_name):
    """Broadcast when device comes online"""
    _emit('device_online', tenant_id, {'device_id': device_id, 'device_name': device_name})


def broadcast_device_offline(tenant_id, device_id, device_name):
    """Broadcast when the offline sweep takes a device offline"""
    _emit('device_offline', tenant_id, {'device_id': device_id, 'device_name': device_name})


def broadcast_command_completed(tenant_id, device_id, command_id, command_type, status):
    """Broadcast when a device acknowledges or fails a command"""
    _emit('command_completed', tenant_id, {
        'device_id': device_id,
        'command_id': command_id,
        'command_type': command_type,
        'status': status
    })


def broadcast_emergency(tenant_id, active, content_type=None, content_id=None):
    """Broadcast emergency override start / end"""
    _emit('emergency_changed', tenant_id, {
        'active': active,
        'content_type': content_type,
        'content_id': content_id
    })
