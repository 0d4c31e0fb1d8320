"""Server-side sessions persisted in the ``session`` table.

The cookie carries only a signed, random session id. Ids the server does not
recognise (unknown, expired, or badly signed) are never adopted; a fresh one is
issued instead.
"""
import secrets
from datetime import datetime

from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, Signer
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import CallbackDict

from extensions import db
from models import ServerSession


class ServerSideSession(CallbackDict, SessionMixin):
    def __init__(self, initial=None, sid: str | None = None, new: bool = False):
        def on_update(self):
            self.modified = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.new = new
        self.modified = False
        # Set when the id must change (login) so the old row is dropped on save.
        self.previous_sid: str | None = None

    def regenerate(self) -> None:
        if self.previous_sid is None and not self.new:
            self.previous_sid = self.sid
        self.sid = DatabaseSessionInterface.new_sid()
        self.modified = True


class DatabaseSessionInterface(SessionInterface):
    serializer = TaggedJSONSerializer()
    salt = "server-session-id"

    @staticmethod
    def new_sid() -> str:
        return secrets.token_urlsafe(32)

    def _signer(self, app) -> Signer | None:
        if not app.secret_key:
            return None
        return Signer(app.secret_key, salt=self.salt, key_derivation="hmac")

    def open_session(self, app, request):
        signer = self._signer(app)
        if signer is None:
            return None
        cookie = request.cookies.get(self.get_cookie_name(app))
        if not cookie:
            return ServerSideSession(sid=self.new_sid(), new=True)
        try:
            sid = signer.unsign(cookie).decode("utf-8")
        except BadSignature:
            return ServerSideSession(sid=self.new_sid(), new=True)

        table = ServerSession.__table__
        try:
            with db.engine.connect() as conn:
                row = conn.execute(
                    select(table.c.sess, table.c.expire).where(table.c.sid == sid)
                ).first()
        except SQLAlchemyError:
            app.logger.exception("Session lookup failed")
            return ServerSideSession(sid=self.new_sid(), new=True)

        if row is None or row.expire <= datetime.utcnow():
            return ServerSideSession(sid=self.new_sid(), new=True)
        try:
            data = self.serializer.loads(row.sess)
        except ValueError:
            app.logger.warning("Discarding undecodable session payload")
            return ServerSideSession(sid=self.new_sid(), new=True)
        return ServerSideSession(data, sid=sid)

    def save_session(self, app, session, response):
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)
        table = ServerSession.__table__

        response.vary.add("Cookie")

        if not session:
            if session.modified:
                with db.engine.begin() as conn:
                    conn.execute(delete(table).where(table.c.sid.in_(self._stale_ids(session))))
                response.delete_cookie(name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly)
            return

        if not self.should_set_cookie(app, session):
            return

        expires = self.get_expiration_time(app, session) or (datetime.utcnow() + app.permanent_session_lifetime)
        expire_naive = expires.replace(tzinfo=None) if expires.tzinfo else expires
        payload = self.serializer.dumps(dict(session))
        with db.engine.begin() as conn:
            if session.previous_sid:
                conn.execute(delete(table).where(table.c.sid == session.previous_sid))
            result = conn.execute(
                update(table).where(table.c.sid == session.sid).values(sess=payload, expire=expire_naive)
            )
            if result.rowcount == 0:
                conn.execute(insert(table).values(sid=session.sid, sess=payload, expire=expire_naive))

        signed = self._signer(app).sign(session.sid.encode("utf-8")).decode("utf-8")
        response.set_cookie(
            name,
            signed,
            expires=expires,
            httponly=httponly,
            domain=domain,
            path=path,
            secure=secure,
            samesite=samesite,
        )

    @staticmethod
    def _stale_ids(session) -> list[str]:
        ids = [session.sid]
        if session.previous_sid:
            ids.append(session.previous_sid)
        return ids


def destroy_session(session) -> None:
    """Drop every key; the interface then deletes the row and clears the cookie."""
    session.clear()
    session.modified = True


def purge_expired_sessions() -> int:
    table = ServerSession.__table__
    with db.engine.begin() as conn:
        result = conn.execute(delete(table).where(table.c.expire <= datetime.utcnow()))
    return result.rowcount or 0
