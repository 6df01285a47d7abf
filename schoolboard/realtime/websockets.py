"""Realtime invalidation.

Backend row changes arrive on the event bus. Each change invalidates its
domain's key family on every registered long-lived query client and is
forwarded to Socket.IO rooms named after the domain, so browsers can do the
same on their side.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging
import weakref

import socketio
from jose import JWTError
from pydantic import ValidationError
from urllib.parse import parse_qs

from schoolboard.query.client import QueryClient
from schoolboard.query.keys import key_family, query_keys
from schoolboard.schemas.realtime import ChangeNotification, InvalidationResult
from schoolboard.services.session import decode_session
from schoolboard.utils.events import CHANGE_EVENT, event_bus

logger = logging.getLogger(__name__)

user_sessions: Dict[str, dict] = {}

live_clients: "weakref.WeakSet[QueryClient]" = weakref.WeakSet()

_sio_server: Optional[socketio.AsyncServer] = None


def register_live_client(client: QueryClient) -> QueryClient:
    live_clients.add(client)
    return client


def unregister_live_client(client: QueryClient):
    live_clients.discard(client)


async def invalidate_domain(domain: str) -> int:
    prefix = key_family(domain)
    invalidated = 0
    for client in list(live_clients):
        invalidated += await client.invalidate_queries(prefix)
    return invalidated


async def handle_change(data: Dict[str, Any]) -> InvalidationResult:
    notification = ChangeNotification.model_validate(data)
    domain = notification.domain
    if domain is None or domain not in query_keys:
        logger.info(f"Ignoring {notification.type.value} on untracked table {notification.table}")
        return InvalidationResult()

    invalidated = await invalidate_domain(domain)
    logger.info(f"{notification.type.value} on {notification.table}: invalidated {invalidated} entries in {domain}")

    if _sio_server is not None:
        await _sio_server.emit('invalidate', {
            'domain': domain,
            'type': notification.type.value,
        }, room=domain)
    return InvalidationResult(domain=domain, invalidated=invalidated)


def register_change_handlers():
    event_bus.subscribe(CHANGE_EVENT, handle_change)


def register_websocket_events(sio_server: socketio.AsyncServer):
    global _sio_server
    _sio_server = sio_server

    @sio_server.event
    async def connect(sid, environ, auth):
        token = None
        if auth and 'token' in auth:
            token = auth['token']
        elif environ.get('QUERY_STRING'):
            query_params = parse_qs(environ.get('QUERY_STRING', ''))
            token = query_params.get('token', [None])[0]

        if not token:
            logger.warning(f"Connection rejected for {sid}: No token")
            return False

        try:
            session = decode_session(token)
        except JWTError:
            logger.warning(f"Connection rejected for {sid}: Invalid token")
            return False
        except ValidationError:
            logger.warning(f"Connection rejected for {sid}: Invalid token payload")
            return False

        user_sessions[sid] = {
            'user_id': session.user_id,
            'role': session.role,
            'connected_at': datetime.now(timezone.utc),
            'subscriptions': set()
        }
        await sio_server.save_session(sid, {'user_id': session.user_id, 'role': session.role})
        logger.info(f"Client {sid} connected (User: {session.user_id}, role: {session.role})")

        await sio_server.emit('connected', {
            'status': 'success',
            'message': 'Connected successfully'
        }, room=sid)
        return True

    @sio_server.event
    async def disconnect(sid):
        user_id = user_sessions.get(sid, {}).get('user_id')

        for room in list(sio_server.rooms(sid)):
            if room != sid:
                await sio_server.leave_room(sid, room)

        user_sessions.pop(sid, None)
        logger.info(f"Client {sid} disconnected (User: {user_id})")

    @sio_server.on('subscribe')
    async def handle_subscribe(sid, data):
        domain = (data or {}).get('domain')
        if not domain or domain not in query_keys:
            await sio_server.emit('error', {
                'message': 'A known domain is required'
            }, room=sid)
            return

        await sio_server.enter_room(sid, domain)
        if sid in user_sessions:
            user_sessions[sid]['subscriptions'].add(domain)

        logger.info(f"Client {sid} subscribed to {domain}")
        await sio_server.emit('subscribed', {
            'domain': domain,
            'status': 'success'
        }, room=sid)

    @sio_server.on('unsubscribe')
    async def handle_unsubscribe(sid, data):
        domain = (data or {}).get('domain')
        if not domain:
            await sio_server.emit('error', {
                'message': 'Domain is required'
            }, room=sid)
            return

        await sio_server.leave_room(sid, domain)
        if sid in user_sessions:
            user_sessions[sid]['subscriptions'].discard(domain)

        logger.info(f"Client {sid} unsubscribed from {domain}")
        await sio_server.emit('unsubscribed', {
            'domain': domain,
            'status': 'success'
        }, room=sid)

    @sio_server.on('ping')
    async def handle_ping(sid, data):
        await sio_server.emit('pong', {
            'timestamp': datetime.now(timezone.utc).isoformat()
        }, room=sid)
