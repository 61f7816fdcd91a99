"""Message channel between the two players of an online match.

The coordinator only relies on the PeerChannel contract: an ordered,
reliable pipe to exactly one remote peer plus five callbacks. How the
peers find each other is the channel's business.
"""
import logging
import queue

import socketio
from socketio import exceptions as sio_exceptions

log = logging.getLogger(__name__)


class PeerChannel:
    """Base class. Owners assign the ``on_*`` callbacks before connecting."""

    def __init__(self):
        self.on_open              = None   # (session_id)
        self.on_peer_connected    = None   # ()
        self.on_message           = None   # (message dict)
        self.on_peer_disconnected = None   # ()
        self.on_error             = None   # (text)
        self.session_id = None
        self._closed = False

    def host_session(self):
        raise NotImplementedError

    def join_session(self, session_id):
        raise NotImplementedError

    def send(self, message):
        raise NotImplementedError

    def close(self):
        self._closed = True

    def _fire(self, name, *args):
        if self._closed: return
        cb = getattr(self, name)
        if cb is not None:
            cb(*args)


class SocketIOPeerChannel(PeerChannel):
    """PeerChannel over a Socket.IO connection to the relay server.

    The Socket.IO client runs every incoming event on its own thread, so
    arrival order on the socket says nothing about handler order. Outgoing
    messages are numbered and wrapped as ``{"seq": n, "data": message}``.
    Incoming events are queued and a single worker delivers them: messages
    in ``seq`` order, none before the pairing, and the peer's departure
    only after every message the relay forwarded from it.
    """

    def __init__(self, url, client=None, timeout=10):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.paired = False
        self._out_seq = 0
        self._next_seq = 0
        self._pending = {}        # seq -> message waiting for its turn
        self._peer_sent = None    # messages to deliver before the peer's departure
        self._peer_gone = False
        self._inbox = queue.Queue()
        self.sio = client or socketio.Client(reconnection=False)
        self.sio.on('peer_message',      self._handle_message)
        self.sio.on('peer_connected',    self._handle_peer_connected)
        self.sio.on('peer_disconnected', self._handle_peer_disconnected)
        self.sio.on('disconnect',        self._handle_disconnect)
        self.sio.start_background_task(self._pump)

    # ── Outgoing ──────────────────────────────────────────────────────────────
    def _connect(self):
        try:
            self.sio.connect(self.url, wait_timeout=self.timeout)
        except sio_exceptions.ConnectionError as e:
            log.warning("Could not reach relay at %s: %s", self.url, e)
            self._post('error', f"Could not reach relay server ({e})")
            return False
        return True

    def _call(self, event, data=None):
        try:
            return self.sio.call(event, data, timeout=self.timeout)
        except sio_exceptions.TimeoutError:
            self._post('error', "Relay server did not answer")
        except sio_exceptions.SocketIOError as e:
            log.warning("Relay call %s failed: %r", event, e)
            self._post('error', "Lost connection to relay server")
        return None

    def host_session(self):
        if not self._connect(): return None
        session_id = self._call('host')
        if session_id is None: return None
        self.session_id = session_id
        log.info("Hosting session %s", session_id)
        self._post('open', session_id)
        return session_id

    def join_session(self, session_id):
        if not self._connect(): return False
        reply = self._call('join', {'session': session_id})
        if reply is None: return False
        if not reply.get('ok'):
            self._post('error', reply.get('error') or "Could not join session")
            return False
        self.session_id = session_id
        log.info("Joined session %s", session_id)
        self._post('connected')
        return True

    def send(self, message):
        if self._closed or not self.paired or not self.sio.connected:
            log.warning("Connection not open, cannot send %s", message.get('type'))
            return
        try:
            self.sio.emit('peer_message', {'seq': self._out_seq, 'data': message})
        except sio_exceptions.SocketIOError as e:
            log.warning("Could not send %s: %r", message.get('type'), e)
            return
        self._out_seq += 1

    def close(self):
        if self._closed: return
        super().close()
        self.paired = False
        self._inbox.put(None)
        if self.sio.connected:
            self.sio.disconnect()

    # ── Incoming ──────────────────────────────────────────────────────────────
    def _post(self, kind, *args):
        if self._closed: return
        self._inbox.put((kind,) + args)

    def _handle_message(self, payload):
        if not isinstance(payload, dict) or not isinstance(payload.get('seq'), int):
            log.warning("Dropping unnumbered relay message %r", payload)
            return
        self._post('message', payload['seq'], payload.get('data'))

    def _handle_peer_connected(self, *args):
        self._post('connected')

    def _handle_peer_disconnected(self, data=None):
        sent = data.get('sent', 0) if isinstance(data, dict) else 0
        self._post('peer_left', sent)

    def _handle_disconnect(self, *args):
        self._post('lost')

    def _pump(self):
        while True:
            item = self._inbox.get()
            try:
                if item is None: return
                self._dispatch(*item)
            except Exception:
                log.exception("Peer channel callback failed on %s", item[0])
            finally:
                self._inbox.task_done()

    def _dispatch(self, kind, *args):
        if kind == 'open':
            self._fire('on_open', *args)
        elif kind == 'error':
            self._fire('on_error', *args)
        elif kind == 'connected':
            if self.paired: return
            self.paired = True
            self._fire('on_peer_connected')
            self._flush()
        elif kind == 'message':
            seq, message = args
            if seq >= self._next_seq:
                self._pending[seq] = message
            self._flush()
        elif kind == 'peer_left':
            self._peer_sent = args[0]
            self._flush()
        elif kind == 'lost':
            if self._peer_gone: return
            # Losing the relay ends the match just like losing the peer
            if self.paired:
                self.paired = False
                self._fire('on_peer_disconnected')
            else:
                self._fire('on_error', "Lost connection to relay server")

    def _flush(self):
        if not self.paired: return
        while self._next_seq in self._pending:
            self._fire('on_message', self._pending.pop(self._next_seq))
            self._next_seq += 1
        if self._peer_sent is not None and self._next_seq >= self._peer_sent:
            self._peer_sent = None
            self.paired = False
            self._peer_gone = True
            self._fire('on_peer_disconnected')
